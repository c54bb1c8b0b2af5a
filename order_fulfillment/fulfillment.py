"""
OrderFulfillment — admission, reservation, pricing and finalization of one order event.

1. Admission: load the order by the event's order id, or insert a Pending one.
   An order that is already Processed or Failed is returned untouched.
2. Reservation pass: reserve each requested item in event order. The first
   missing or short item fails the order and stops the pass. Reservations made
   for earlier items are kept (no compensation).
3. Pricing pass over the reserved lines.
4. Finalization: persist the Processed order by full replacement and bump the
   processed counter.

``fulfill`` never raises. It returns one of ``Completed``, ``RetryableFault`` or
``TerminalFault`` and leaves the acknowledgement decision to the delivery loop.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Optional, Union

from order_fulfillment.errors import StoreUnavailable
from order_fulfillment.inventory import InventoryReservationService
from order_fulfillment.metrics import ProcessingCounters
from order_fulfillment.models import Order, OrderEvent, OrderLine, OrderStatus, utcnow
from order_fulfillment.pricing import PricingEngine
from order_fulfillment.store import ORDERS, DocumentStore

logger = logging.getLogger("OrderFulfillment")


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Completed:
    """The order reached (or already was in) a terminal state."""
    order: Order


@dataclass(frozen=True)
class RetryableFault:
    """Processing could not finish; the event should be redelivered."""
    error: BaseException


@dataclass(frozen=True)
class TerminalFault:
    """The event can never be processed; it should be dropped."""
    reason: str


FulfillmentResult = Union[Completed, RetryableFault, TerminalFault]


class OrderFulfillment:
    def __init__(
        self,
        store: DocumentStore,
        inventory: InventoryReservationService,
        pricing: PricingEngine,
        counters: ProcessingCounters,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._store = store
        self._inventory = inventory
        self._pricing = pricing
        self._counters = counters
        self._clock = clock

    def fulfill(self, event: OrderEvent) -> FulfillmentResult:
        try:
            return Completed(self._process(event))
        except StoreUnavailable as e:
            logger.warning("Store unavailable while processing order %s: %s", event.order_id, e)
            return RetryableFault(e)
        except Exception as e:
            logger.exception("Unexpected error while processing order %s", event.order_id)
            return RetryableFault(e)

    # -----------------------------------------------------------------------
    # Admission
    # -----------------------------------------------------------------------

    def admit(self, event: OrderEvent) -> Order:
        """Return the stored order for the event, inserting a Pending one on first sight."""
        doc = self._store.find_by_id(ORDERS, event.order_id)
        if doc is not None:
            return Order.model_validate(doc)

        order = Order.admit(event)
        order.created_at_utc = self._clock()
        if not self._store.insert_if_absent(ORDERS, order.to_document()):
            # Lost a race with another worker admitting the same order id.
            return Order.model_validate(self._store.find_by_id(ORDERS, event.order_id))
        logger.info("Admitted order %s for customer %s", order.id, order.customer_id)
        return order

    # -----------------------------------------------------------------------
    # Processing
    # -----------------------------------------------------------------------

    def _process(self, event: OrderEvent) -> Order:
        order = self.admit(event)
        if order.status.is_terminal:
            logger.info("Order %s already %s, skipping redelivered event", order.id, order.status.value)
            return order

        logger.info("Processing order %s for customer %s", order.id, order.customer_id)

        lines = self._reserve_lines(order, event)
        if lines is None:
            return order

        quote = self._pricing.quote(lines, event.promo_code)
        order.items = lines
        order.total_amount = quote.total
        order.applied_discount = quote.discount
        order.notes = quote.note
        order.status = OrderStatus.PROCESSED
        order.processed_at_utc = self._clock()
        self._persist(order)
        self._counters.increment_processed()
        logger.info(
            "Order %s processed. Total: %s Discount: %s",
            order.id, order.total_amount, order.applied_discount,
        )
        return order

    def _reserve_lines(self, order: Order, event: OrderEvent) -> Optional[List[OrderLine]]:
        """Reserve every requested item in order. Returns None after failing the order."""
        lines: List[OrderLine] = []
        for requested in event.items:
            item = self._inventory.get_item(requested.inventory_item_id)
            if item is None:
                logger.warning(
                    "Order %s failed: inventory item %s not found",
                    order.id, requested.inventory_item_id,
                )
                self._fail(order, f"Inventory item not found: {requested.inventory_item_id}")
                return None

            if not self._inventory.reserve(item.id, requested.quantity):
                logger.warning(
                    "Order %s failed: insufficient stock for item %s (requested %d)",
                    order.id, item.id, requested.quantity,
                )
                self._fail(order, f"Insufficient stock for item: {item.id}")
                return None

            lines.append(
                OrderLine(
                    inventory_item_id=item.id,
                    name=item.name,
                    quantity=requested.quantity,
                    unit_price=item.unit_price,
                )
            )
        return lines

    def _fail(self, order: Order, note: str) -> None:
        order.status = OrderStatus.FAILED
        order.notes = note
        order.processed_at_utc = self._clock()
        self._persist(order)
        self._counters.increment_failed()

    def _persist(self, order: Order) -> None:
        if not self._store.replace_by_id(ORDERS, order.id, order.to_document()):
            raise StoreUnavailable(f"Order {order.id} vanished before it could be replaced")
