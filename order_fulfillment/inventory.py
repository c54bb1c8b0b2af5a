"""
InventoryReservationService — atomic, irreversible stock reservation.

``reserve`` delegates the "available >= quantity" check and the decrement to a
single conditional write in the document store, so concurrent workers sharing
the store can never drive ``availableQuantity`` below zero. A granted
reservation is permanent: there is no release primitive.
"""

import logging
from decimal import Decimal
from typing import Optional
from uuid import UUID

from order_fulfillment import ids
from order_fulfillment.models import InventoryItem
from order_fulfillment.store import INVENTORY, DocumentStore

logger = logging.getLogger("InventoryService")

AVAILABLE_QUANTITY = "availableQuantity"


class InventoryReservationService:
    def __init__(self, store: DocumentStore):
        self._store = store

    def get_item(self, item_id: UUID) -> Optional[InventoryItem]:
        doc = self._store.find_by_id(INVENTORY, item_id)
        if doc is None:
            return None
        return InventoryItem.model_validate(doc)

    def reserve(self, item_id: UUID, quantity: int) -> bool:
        """Atomically decrement available stock. Returns False if the item is missing or short."""
        if quantity <= 0:
            raise ValueError(f"quantity must be positive, got {quantity}")
        granted = self._store.conditional_decrement(INVENTORY, item_id, AVAILABLE_QUANTITY, quantity)
        if granted:
            logger.info("Reserved %d of item %s", quantity, item_id)
        else:
            logger.info("Reservation of %d refused for item %s", quantity, item_id)
        return granted

    def create_item(self, name: str, unit_price: Decimal, available_quantity: int) -> InventoryItem:
        item = InventoryItem(
            id=ids.generate_inventory_item_id(),
            name=name,
            unit_price=unit_price,
            available_quantity=available_quantity,
        )
        self._store.insert_one(INVENTORY, item.to_document())
        logger.info("Created inventory item %s (%s) qty=%d price=%s", item.id, name, available_quantity, unit_price)
        return item
