from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Annotated, List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, PlainSerializer
from pydantic.alias_generators import to_camel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# Exact Decimal in the store, a JSON number on the wire.
Money = Annotated[Decimal, PlainSerializer(float, return_type=float, when_used="json")]


class CamelModel(BaseModel):
    """Base model serialized with the camelCase field names of the wire/document format."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Inbound event
# ---------------------------------------------------------------------------

class OrderLineRequest(CamelModel):
    inventory_item_id: UUID
    quantity: int = Field(gt=0)


class OrderEvent(CamelModel):
    order_id: UUID
    customer_id: str
    items: List[OrderLineRequest] = Field(min_length=1)
    promo_code: Optional[str] = None


# ---------------------------------------------------------------------------
# Persisted documents
# ---------------------------------------------------------------------------

class OrderStatus(str, Enum):
    PENDING = "Pending"
    PROCESSED = "Processed"
    FAILED = "Failed"

    @property
    def is_terminal(self) -> bool:
        return self is not OrderStatus.PENDING


class OrderLine(CamelModel):
    """A reserved line item. unit_price is the price snapshot taken at reservation time."""

    model_config = ConfigDict(frozen=True)

    inventory_item_id: UUID
    name: str
    quantity: int
    unit_price: Money

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity


class Order(CamelModel):
    id: UUID
    customer_id: str
    items: List[OrderLine] = Field(default_factory=list)
    total_amount: Money = Decimal("0")
    status: OrderStatus = OrderStatus.PENDING
    created_at_utc: datetime = Field(default_factory=utcnow)
    processed_at_utc: Optional[datetime] = None
    applied_discount: Money = Decimal("0")
    notes: Optional[str] = None

    @classmethod
    def admit(cls, event: OrderEvent) -> "Order":
        return cls(id=event.order_id, customer_id=event.customer_id)

    def to_document(self) -> dict:
        return self.model_dump(by_alias=True)


class InventoryItem(CamelModel):
    id: UUID
    name: str
    available_quantity: int = Field(ge=0)
    unit_price: Money = Field(ge=0)

    def to_document(self) -> dict:
        return self.model_dump(by_alias=True)
