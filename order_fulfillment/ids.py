import uuid


def generate_order_id() -> uuid.UUID:
    return uuid.uuid4()


def generate_inventory_item_id() -> uuid.UUID:
    return uuid.uuid4()


def generate_correlation_id() -> str:
    return str(uuid.uuid4())
