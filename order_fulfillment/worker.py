"""
OrderWorker — single-concurrency delivery loop over the order queue.

Each delivery is decoded, handed to OrderFulfillment and then explicitly
acknowledged or negatively acknowledged:

* Completed (Processed or Failed order) -> ack
* TerminalFault (malformed body)         -> ack, warning, no retry
* RetryableFault (store down, bug)       -> nack with requeue

Exactly one delivery is in flight at a time (prefetch 1, no pipelining).
"""

import logging
import signal
import threading
from enum import Enum
from typing import Callable, ContextManager, Iterator, Protocol

import pika.exceptions
from pydantic import ValidationError

from order_fulfillment import config
from order_fulfillment.errors import MalformedEvent
from order_fulfillment.fulfillment import (
    Completed,
    FulfillmentResult,
    OrderFulfillment,
    RetryableFault,
    TerminalFault,
)
from order_fulfillment.inventory import InventoryReservationService
from order_fulfillment.messaging import Delivery, RabbitConsumer
from order_fulfillment.metrics import ProcessingCounters
from order_fulfillment.models import OrderEvent
from order_fulfillment.pricing import PricingEngine
from order_fulfillment.store import DocumentStore, MongoDocumentStore

logger = logging.getLogger("OrderWorker")


class Acknowledgement(str, Enum):
    ACK = "ack"
    NACK_REQUEUE = "nack_requeue"


class DeliveryChannel(Protocol):
    def deliveries(self, stop: threading.Event) -> Iterator[Delivery]:
        ...

    def ack(self, delivery_tag: int) -> None:
        ...

    def nack(self, delivery_tag: int, requeue: bool = True) -> None:
        ...


def decode_event(body: bytes) -> OrderEvent:
    try:
        return OrderEvent.model_validate_json(body)
    except (ValidationError, ValueError) as e:
        raise MalformedEvent(str(e)) from e


def acknowledgement_for(result: FulfillmentResult) -> Acknowledgement:
    if isinstance(result, RetryableFault):
        return Acknowledgement.NACK_REQUEUE
    return Acknowledgement.ACK


class OrderWorker:
    def __init__(self, fulfillment: OrderFulfillment):
        self.fulfillment = fulfillment

    def handle(self, delivery: Delivery) -> FulfillmentResult:
        try:
            event = decode_event(delivery.body)
        except MalformedEvent as e:
            logger.warning(
                "Dropping malformed message (tag=%s, correlation=%s): %s",
                delivery.delivery_tag, delivery.correlation_id, e,
            )
            return TerminalFault(str(e))

        logger.info(
            "Received order %s (correlation=%s, redelivered=%s)",
            event.order_id, delivery.correlation_id, delivery.redelivered,
        )
        return self.fulfillment.fulfill(event)

    def run(self, channel: DeliveryChannel, stop: threading.Event) -> None:
        """Consume until ``stop`` is set or the channel is exhausted."""
        for delivery in channel.deliveries(stop):
            result = self.handle(delivery)
            if acknowledgement_for(result) is Acknowledgement.NACK_REQUEUE:
                logger.warning("Requeueing delivery %s", delivery.delivery_tag)
                channel.nack(delivery.delivery_tag, requeue=True)
            else:
                channel.ack(delivery.delivery_tag)
                if isinstance(result, Completed):
                    logger.info("Order %s acknowledged as %s", result.order.id, result.order.status.value)

    def run_forever(
        self,
        stop: threading.Event,
        consumer_factory: Callable[[], ContextManager[DeliveryChannel]] = RabbitConsumer,
        reconnect_delay: float = 5,
    ) -> None:
        """Consume with a fresh consumer connection, reconnecting after broker failures."""
        while not stop.is_set():
            try:
                with consumer_factory() as consumer:
                    logger.info("OrderWorker ready — waiting for order events...")
                    self.run(consumer, stop)
            except pika.exceptions.AMQPConnectionError:
                logger.warning("Lost connection to RabbitMQ, reconnecting in %ss...", reconnect_delay)
                stop.wait(reconnect_delay)
            except pika.exceptions.AMQPError as e:
                logger.error("Broker error: %s, restarting in %ss...", e, reconnect_delay)
                stop.wait(reconnect_delay)
        logger.info("OrderWorker stopped")


def start_in_thread(worker: OrderWorker, stop: threading.Event) -> threading.Thread:
    thread = threading.Thread(target=worker.run_forever, args=(stop,), name="order-worker", daemon=True)
    thread.start()
    return thread


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------

def build_worker(store: DocumentStore, counters: ProcessingCounters) -> OrderWorker:
    fulfillment = OrderFulfillment(
        store=store,
        inventory=InventoryReservationService(store),
        pricing=PricingEngine(delay_ms=config.PRICING_DELAY_MS),
        counters=counters,
    )
    return OrderWorker(fulfillment)


def main() -> None:
    logging.basicConfig(level=config.LOG_LEVEL, format=config.LOG_FORMAT)

    stop = threading.Event()

    def graceful_shutdown(signum, frame):
        logger.info("Shutting down OrderWorker (signal %d)...", signum)
        stop.set()

    signal.signal(signal.SIGINT, graceful_shutdown)
    signal.signal(signal.SIGTERM, graceful_shutdown)

    store = MongoDocumentStore(config.MONGO_URL, config.MONGO_DATABASE)
    counters = ProcessingCounters()
    try:
        build_worker(store, counters).run_forever(stop)
    finally:
        store.close()
        logger.info("Processed %d orders, failed %d", counters.processed, counters.failed)


if __name__ == "__main__":
    main()
