"""Shared fixtures: in-memory store, seeded inventory, and the fulfillment pipeline."""

from decimal import Decimal

import pytest

from order_fulfillment import ids
from order_fulfillment.fulfillment import OrderFulfillment
from order_fulfillment.inventory import InventoryReservationService
from order_fulfillment.metrics import ProcessingCounters
from order_fulfillment.models import InventoryItem
from order_fulfillment.pricing import PricingEngine, PromoCodeDiscount
from order_fulfillment.store import INVENTORY, InMemoryDocumentStore
from tests.helpers import FIXED_NOW


@pytest.fixture
def store():
    return InMemoryDocumentStore()


@pytest.fixture
def counters():
    return ProcessingCounters()


@pytest.fixture
def inventory(store):
    return InventoryReservationService(store)


@pytest.fixture
def pricing():
    return PricingEngine(rules=[PromoCodeDiscount("hello", Decimal("0.10"))], delay_ms=0)


@pytest.fixture
def fulfillment(store, inventory, pricing, counters):
    return OrderFulfillment(store, inventory, pricing, counters, clock=lambda: FIXED_NOW)


@pytest.fixture
def add_item(store):
    def _add(name: str = "widget", quantity: int = 5, price: str = "10.00") -> InventoryItem:
        item = InventoryItem(
            id=ids.generate_inventory_item_id(),
            name=name,
            available_quantity=quantity,
            unit_price=Decimal(price),
        )
        store.insert_one(INVENTORY, item.to_document())
        return item

    return _add
