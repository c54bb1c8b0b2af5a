"""
RabbitMQ connection handles.

The consumer and the publisher each own a separate ``pika.BlockingConnection``
with its own lifecycle. Both are context managers: the connection is opened on
entry and closed on exit, including when the body raises.
"""

import logging
import threading
import time
from typing import Iterator, NamedTuple, Optional

import pika
import pika.exceptions

from order_fulfillment import config
from order_fulfillment.errors import PublishFailed
from order_fulfillment.models import OrderEvent

logger = logging.getLogger("Messaging")


# ---------------------------------------------------------------------------
# RabbitMQ helpers
# ---------------------------------------------------------------------------

def connection_parameters() -> pika.ConnectionParameters:
    return pika.ConnectionParameters(
        host=config.RABBITMQ_HOST,
        port=config.RABBITMQ_PORT,
        credentials=pika.PlainCredentials(config.RABBITMQ_USER, config.RABBITMQ_PASSWORD),
        heartbeat=600,
        blocked_connection_timeout=300,
    )


def get_connection(
    retries: int = config.RABBITMQ_CONNECT_RETRIES,
    delay: int = config.RABBITMQ_CONNECT_DELAY,
) -> pika.BlockingConnection:
    """Create a blocking connection to RabbitMQ with retry logic."""
    for attempt in range(1, retries + 1):
        try:
            conn = pika.BlockingConnection(connection_parameters())
            logger.info("Connected to RabbitMQ (attempt %d)", attempt)
            return conn
        except pika.exceptions.AMQPConnectionError:
            logger.warning("RabbitMQ not ready, retrying in %ds (%d/%d)", delay, attempt, retries)
            time.sleep(delay)
    logger.error("Could not connect to RabbitMQ after %d attempts", retries)
    raise pika.exceptions.AMQPConnectionError(f"gave up after {retries} attempts")


def setup_channel(channel, queue: str) -> None:
    """Declare the durable order queue (idempotent)."""
    channel.queue_declare(queue=queue, durable=True, exclusive=False, auto_delete=False)


def close_connection(connection: Optional[pika.BlockingConnection]) -> None:
    try:
        if connection is not None and connection.is_open:
            connection.close()
    except pika.exceptions.AMQPError as e:
        logger.warning("Error while closing RabbitMQ connection: %s", e)


class Delivery(NamedTuple):
    delivery_tag: int
    body: bytes
    correlation_id: Optional[str] = None
    redelivered: bool = False


# ---------------------------------------------------------------------------
# Consumer
# ---------------------------------------------------------------------------

class RabbitConsumer:
    """Pull-style consumer: yields one delivery at a time, acknowledgement is explicit."""

    def __init__(self, queue: str = config.ORDER_QUEUE,
                 inactivity_timeout: float = config.CONSUMER_INACTIVITY_TIMEOUT):
        self.queue = queue
        self.inactivity_timeout = inactivity_timeout
        self._connection: Optional[pika.BlockingConnection] = None
        self._channel = None

    def __enter__(self) -> "RabbitConsumer":
        self._connection = get_connection()
        try:
            self._channel = self._connection.channel()
            setup_channel(self._channel, self.queue)
            self._channel.basic_qos(prefetch_count=1)
        except BaseException:
            close_connection(self._connection)
            self._channel = None
            self._connection = None
            raise
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def deliveries(self, stop: threading.Event) -> Iterator[Delivery]:
        """Yield deliveries until ``stop`` is set. Waits in slices of ``inactivity_timeout``."""
        for method, properties, body in self._channel.consume(
            self.queue, auto_ack=False, inactivity_timeout=self.inactivity_timeout
        ):
            if stop.is_set():
                if method is not None:
                    # Not started yet; hand it back to the broker.
                    self._channel.basic_nack(delivery_tag=method.delivery_tag, requeue=True)
                break
            if method is None:
                continue
            yield Delivery(
                delivery_tag=method.delivery_tag,
                body=body,
                correlation_id=getattr(properties, "correlation_id", None),
                redelivered=bool(method.redelivered),
            )

    def ack(self, delivery_tag: int) -> None:
        self._channel.basic_ack(delivery_tag=delivery_tag)

    def nack(self, delivery_tag: int, requeue: bool = True) -> None:
        self._channel.basic_nack(delivery_tag=delivery_tag, requeue=requeue)

    def close(self) -> None:
        try:
            if self._channel is not None and self._channel.is_open:
                self._channel.cancel()
                self._channel.close()
            if self._connection is not None and self._connection.is_open:
                self._connection.close()
        except pika.exceptions.AMQPError as e:
            logger.warning("Error while closing consumer connection: %s", e)
        finally:
            self._channel = None
            self._connection = None


# ---------------------------------------------------------------------------
# Publisher
# ---------------------------------------------------------------------------

class OrderQueuePublisher:
    """Publishes persistent order events to the durable order queue.

    The underlying connection is not thread-safe, so publishes are serialized
    with a lock. A closed connection is reopened on the next publish.
    """

    def __init__(self, queue: str = config.ORDER_QUEUE):
        self.queue = queue
        self._lock = threading.Lock()
        self._connection: Optional[pika.BlockingConnection] = None
        self._channel = None

    def __enter__(self) -> "OrderQueuePublisher":
        with self._lock:
            self._open()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _open(self) -> None:
        connection = get_connection(retries=3, delay=2)
        try:
            channel = connection.channel()
            setup_channel(channel, self.queue)
        except BaseException:
            close_connection(connection)
            raise
        self._connection = connection
        self._channel = channel

    def publish(self, event: OrderEvent, correlation_id: Optional[str] = None) -> None:
        body = event.model_dump_json(by_alias=True)
        try:
            with self._lock:
                if self._channel is None or not self._channel.is_open:
                    self._open()
                self._channel.basic_publish(
                    exchange="",
                    routing_key=self.queue,
                    body=body,
                    properties=pika.BasicProperties(
                        delivery_mode=2,  # persistent
                        content_type="application/json",
                        correlation_id=correlation_id,
                    ),
                )
        except pika.exceptions.AMQPError as e:
            logger.error("Failed to publish order %s: %s", event.order_id, e)
            raise PublishFailed(str(e)) from e
        logger.info("Published order %s (%d items)", event.order_id, len(event.items))

    def close(self) -> None:
        with self._lock:
            try:
                if self._connection is not None and self._connection.is_open:
                    self._connection.close()
            except pika.exceptions.AMQPError as e:
                logger.warning("Error while closing publisher connection: %s", e)
            finally:
                self._channel = None
                self._connection = None
