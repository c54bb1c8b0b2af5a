import json
import threading
import uuid
from unittest import mock

import pika.exceptions
import pytest

from order_fulfillment.errors import PublishFailed
from order_fulfillment.messaging import OrderQueuePublisher, RabbitConsumer
from tests.helpers import make_event


def fake_connection(channel):
    connection = mock.MagicMock()
    connection.channel.return_value = channel
    connection.is_open = True
    return connection


def test_consumer_declares_durable_queue_with_prefetch_one():
    channel = mock.MagicMock()
    with mock.patch("order_fulfillment.messaging.get_connection", return_value=fake_connection(channel)):
        with RabbitConsumer(queue="orders"):
            pass

    channel.queue_declare.assert_called_once_with(queue="orders", durable=True, exclusive=False, auto_delete=False)
    channel.basic_qos.assert_called_once_with(prefetch_count=1)
    channel.close.assert_called_once()


def test_consumer_closes_connection_when_queue_declare_fails():
    channel = mock.MagicMock()
    channel.queue_declare.side_effect = pika.exceptions.ChannelClosedByBroker(406, "PRECONDITION_FAILED")
    connection = fake_connection(channel)

    with mock.patch("order_fulfillment.messaging.get_connection", return_value=connection):
        with pytest.raises(pika.exceptions.ChannelClosedByBroker):
            with RabbitConsumer(queue="orders"):
                pass

    connection.close.assert_called_once()
    channel.basic_qos.assert_not_called()


def test_publisher_closes_connection_when_queue_declare_fails():
    channel = mock.MagicMock()
    channel.queue_declare.side_effect = pika.exceptions.ChannelClosedByBroker(406, "PRECONDITION_FAILED")
    connection = fake_connection(channel)

    with mock.patch("order_fulfillment.messaging.get_connection", return_value=connection):
        with pytest.raises(pika.exceptions.ChannelClosedByBroker):
            with OrderQueuePublisher(queue="orders"):
                pass

    connection.close.assert_called_once()


def test_publisher_reopen_failure_closes_connection_and_raises_publish_failed():
    channel = mock.MagicMock()
    channel.queue_declare.side_effect = pika.exceptions.ChannelClosedByBroker(406, "PRECONDITION_FAILED")
    connection = fake_connection(channel)
    publisher = OrderQueuePublisher(queue="orders")

    with mock.patch("order_fulfillment.messaging.get_connection", return_value=connection):
        with pytest.raises(PublishFailed):
            publisher.publish(make_event((uuid.uuid4(), 1)))

    connection.close.assert_called_once()
    channel.basic_publish.assert_not_called()


def test_consumer_yields_deliveries_and_skips_idle_slices():
    method = mock.Mock(delivery_tag=7, redelivered=True)
    properties = mock.Mock(correlation_id="corr-1")
    channel = mock.MagicMock()
    channel.consume.return_value = iter([(None, None, None), (method, properties, b"body")])

    with mock.patch("order_fulfillment.messaging.get_connection", return_value=fake_connection(channel)):
        with RabbitConsumer(queue="orders", inactivity_timeout=0.1) as consumer:
            deliveries = list(consumer.deliveries(threading.Event()))
            consumer.ack(7)

    assert len(deliveries) == 1
    assert deliveries[0].delivery_tag == 7
    assert deliveries[0].body == b"body"
    assert deliveries[0].correlation_id == "corr-1"
    assert deliveries[0].redelivered is True
    channel.consume.assert_called_once_with("orders", auto_ack=False, inactivity_timeout=0.1)
    channel.basic_ack.assert_called_once_with(delivery_tag=7)


def test_consumer_hands_back_delivery_received_after_stop():
    method = mock.Mock(delivery_tag=3, redelivered=False)
    channel = mock.MagicMock()
    channel.consume.return_value = iter([(method, mock.Mock(), b"body")])
    stop = threading.Event()
    stop.set()

    with mock.patch("order_fulfillment.messaging.get_connection", return_value=fake_connection(channel)):
        with RabbitConsumer(queue="orders") as consumer:
            assert list(consumer.deliveries(stop)) == []

    channel.basic_nack.assert_called_once_with(delivery_tag=3, requeue=True)


def test_publisher_sends_persistent_message_with_correlation_id():
    channel = mock.MagicMock()
    channel.is_open = True
    event = make_event((uuid.uuid4(), 2), promo_code="hello")

    with mock.patch("order_fulfillment.messaging.get_connection", return_value=fake_connection(channel)):
        with OrderQueuePublisher(queue="orders") as publisher:
            publisher.publish(event, correlation_id="corr-9")

    kwargs = channel.basic_publish.call_args.kwargs
    assert kwargs["exchange"] == ""
    assert kwargs["routing_key"] == "orders"
    assert kwargs["properties"].delivery_mode == 2
    assert kwargs["properties"].correlation_id == "corr-9"
    body = json.loads(kwargs["body"])
    assert body["orderId"] == str(event.order_id)
    assert body["items"][0]["quantity"] == 2
    assert body["promoCode"] == "hello"


def test_publisher_wraps_broker_errors():
    channel = mock.MagicMock()
    channel.is_open = True
    channel.basic_publish.side_effect = pika.exceptions.AMQPChannelError("closed")

    with mock.patch("order_fulfillment.messaging.get_connection", return_value=fake_connection(channel)):
        with OrderQueuePublisher(queue="orders") as publisher:
            with pytest.raises(PublishFailed):
                publisher.publish(make_event((uuid.uuid4(), 1)))
