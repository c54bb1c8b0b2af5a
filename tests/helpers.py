import threading
from datetime import datetime, timezone
from typing import Iterator, List, Optional, Tuple

from order_fulfillment import ids
from order_fulfillment.messaging import Delivery
from order_fulfillment.models import OrderEvent, OrderLineRequest
from order_fulfillment.store import INVENTORY

FIXED_NOW = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


def make_event(*lines: Tuple[object, int], promo_code: Optional[str] = None,
               order_id=None, customer_id: str = "cust-1") -> OrderEvent:
    return OrderEvent(
        order_id=order_id or ids.generate_order_id(),
        customer_id=customer_id,
        items=[OrderLineRequest(inventory_item_id=item_id, quantity=qty) for item_id, qty in lines],
        promo_code=promo_code,
    )


def stock_of(store, item_id) -> int:
    return store.find_by_id(INVENTORY, item_id)["availableQuantity"]


class FakeChannel:
    """In-memory stand-in for RabbitConsumer recording acknowledgements."""

    def __init__(self, bodies: List[bytes]):
        self._deliveries = [Delivery(delivery_tag=i + 1, body=b) for i, b in enumerate(bodies)]
        self.acked: List[int] = []
        self.nacked: List[Tuple[int, bool]] = []

    def deliveries(self, stop: threading.Event) -> Iterator[Delivery]:
        for delivery in self._deliveries:
            if stop.is_set():
                break
            yield delivery

    def ack(self, delivery_tag: int) -> None:
        self.acked.append(delivery_tag)

    def nack(self, delivery_tag: int, requeue: bool = True) -> None:
        self.nacked.append((delivery_tag, requeue))

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return None


class FakePublisher:
    def __init__(self, error: Optional[Exception] = None):
        self.published: List[Tuple[OrderEvent, Optional[str]]] = []
        self.error = error

    def publish(self, event: OrderEvent, correlation_id: Optional[str] = None) -> None:
        if self.error is not None:
            raise self.error
        self.published.append((event, correlation_id))
