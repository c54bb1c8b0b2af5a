"""Exception types raised at component seams.

Validation failures of an order (missing item, insufficient stock) are not
exceptions: they end the order in the Failed state. These types cover input
that cannot be processed at all and faults of the infrastructure underneath.
"""


class OrderFulfillmentError(Exception):
    """Base exception for the order fulfillment package."""


class MalformedEvent(OrderFulfillmentError):
    """An inbound event body could not be decoded into an OrderEvent."""


class StoreUnavailable(OrderFulfillmentError):
    """The document store could not be reached or rejected an operation."""


class PublishFailed(OrderFulfillmentError):
    """An order event could not be handed to the broker."""
