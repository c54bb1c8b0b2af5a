"""
HTTP surface — accepts orders, reads them back, creates inventory, exposes metrics.

Orders are not processed here: ``POST /orders`` only publishes an event to the
order queue. When ``RUN_EMBEDDED_WORKER`` is set the same process also runs the
OrderWorker on a background thread with its own consumer connection.

Run with ``uvicorn order_fulfillment.api:app``.
"""

import logging
import threading
from contextlib import ExitStack, asynccontextmanager
from decimal import Decimal
from typing import Any, Dict, List, Optional
from uuid import UUID

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from order_fulfillment import config, ids
from order_fulfillment.errors import PublishFailed
from order_fulfillment.inventory import InventoryReservationService
from order_fulfillment.messaging import OrderQueuePublisher
from order_fulfillment.metrics import ProcessingCounters
from order_fulfillment.models import CamelModel, Order, OrderEvent, OrderLineRequest, OrderStatus
from order_fulfillment.store import ORDERS, DocumentStore, MongoDocumentStore
from order_fulfillment.worker import build_worker, start_in_thread

logger = logging.getLogger("OrderAPI")


# ---------------------------------------------------------------------------
# Request / response models
# ---------------------------------------------------------------------------

class CreateOrderItem(CamelModel):
    inventory_item_id: UUID
    quantity: int


class CreateOrderRequest(CamelModel):
    customer_id: Optional[str] = None
    items: Optional[List[CreateOrderItem]] = None
    promo_code: Optional[str] = None


class InventoryCreateRequest(CamelModel):
    name: Optional[str] = None
    unit_price: Decimal
    available_quantity: int


class ErrorDetail(BaseModel):
    code: str
    message: str
    details: Optional[Dict[str, Any]] = None
    order_id: Optional[str] = None
    correlation_id: Optional[str] = None


class ErrorResponse(BaseModel):
    error: ErrorDetail


def error_response(status_code: int, code: str, message: str, **kwargs) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=ErrorDetail(code=code, message=message, **kwargs)).model_dump(),
    )


def inventory_service(request: Request) -> InventoryReservationService:
    return InventoryReservationService(request.app.state.store)


# ---------------------------------------------------------------------------
# App factory
# ---------------------------------------------------------------------------

def create_app(
    store: Optional[DocumentStore] = None,
    publisher: Optional[OrderQueuePublisher] = None,
    counters: Optional[ProcessingCounters] = None,
    run_worker: bool = config.RUN_EMBEDDED_WORKER,
) -> FastAPI:
    """Build the API. Collaborators not passed in are created and owned by the lifespan."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        stop = threading.Event()
        worker_thread = None
        with ExitStack() as stack:
            if app.state.store is None:
                app.state.store = MongoDocumentStore(config.MONGO_URL, config.MONGO_DATABASE)
                stack.callback(app.state.store.close)
            if app.state.publisher is None:
                app.state.publisher = stack.enter_context(OrderQueuePublisher())

            if run_worker:
                worker = build_worker(app.state.store, app.state.counters)
                worker_thread = start_in_thread(worker, stop)
                logger.info("Embedded OrderWorker started")

            try:
                yield
            finally:
                stop.set()
                if worker_thread is not None:
                    worker_thread.join(timeout=config.CONSUMER_INACTIVITY_TIMEOUT + 5)
                logger.info("OrderAPI shutting down")

    app = FastAPI(title="Order Fulfillment", lifespan=lifespan)
    app.state.store = store
    app.state.publisher = publisher
    app.state.counters = counters if counters is not None else ProcessingCounters()

    @app.middleware("http")
    async def add_correlation_id(request: Request, call_next):
        correlation_id = request.headers.get("X-Correlation-Id")
        if not correlation_id:
            correlation_id = ids.generate_correlation_id()

        request.state.correlation_id = correlation_id

        response = await call_next(request)
        response.headers["X-Correlation-Id"] = correlation_id
        return response

    @app.get("/health")
    def health():
        return {"status": "ok", "service": "order-fulfillment"}

    @app.post("/orders", status_code=202)
    def create_order(request: Request, order_req: CreateOrderRequest):
        correlation_id = request.state.correlation_id
        if not order_req.customer_id or not order_req.customer_id.strip() or not order_req.items:
            return error_response(
                400, "INVALID_ORDER", "CustomerId and Items are required",
                correlation_id=correlation_id,
            )
        if any(item.quantity <= 0 for item in order_req.items):
            return error_response(
                400, "INVALID_ORDER", "Item quantities must be positive",
                correlation_id=correlation_id,
            )

        order_id = ids.generate_order_id()
        event = OrderEvent(
            order_id=order_id,
            customer_id=order_req.customer_id,
            items=[
                OrderLineRequest(inventory_item_id=i.inventory_item_id, quantity=i.quantity)
                for i in order_req.items
            ],
            promo_code=order_req.promo_code,
        )
        try:
            request.app.state.publisher.publish(event, correlation_id=correlation_id)
        except PublishFailed as e:
            return error_response(
                503, "PUBLISH_FAILED", "Order could not be queued",
                details={"error": str(e)}, order_id=str(order_id), correlation_id=correlation_id,
            )

        logger.info("Accepted order %s for customer %s, correlation %s", order_id, order_req.customer_id, correlation_id)
        return JSONResponse(
            status_code=202,
            content={"orderId": str(order_id), "status": OrderStatus.PENDING.value},
            headers={"Location": f"/orders/{order_id}"},
        )

    @app.get("/orders/{order_id}")
    def get_order(request: Request, order_id: UUID):
        doc = request.app.state.store.find_by_id(ORDERS, order_id)
        if doc is None:
            return error_response(404, "ORDER_NOT_FOUND", "Order not found", order_id=str(order_id))
        return Order.model_validate(doc).model_dump(mode="json", by_alias=True)

    @app.post("/inventory", status_code=201)
    def create_inventory_item(request: Request, req: InventoryCreateRequest):
        if not req.name or not req.name.strip() or req.unit_price < 0 or req.available_quantity < 0:
            return error_response(
                400, "INVALID_INVENTORY_ITEM",
                "Name is required; UnitPrice and AvailableQuantity must be >= 0",
                correlation_id=request.state.correlation_id,
            )
        item = inventory_service(request).create_item(req.name, req.unit_price, req.available_quantity)
        return JSONResponse(
            status_code=201,
            content=item.model_dump(mode="json", by_alias=True),
            headers={"Location": f"/inventory/{item.id}"},
        )

    @app.get("/inventory/{item_id}")
    def get_inventory_item(request: Request, item_id: UUID):
        item = inventory_service(request).get_item(item_id)
        if item is None:
            return error_response(404, "INVENTORY_ITEM_NOT_FOUND", "Inventory item not found")
        return item.model_dump(mode="json", by_alias=True)

    @app.get("/metrics")
    def metrics(request: Request):
        return request.app.state.counters.snapshot()

    return app


logging.basicConfig(level=config.LOG_LEVEL, format=config.LOG_FORMAT)

app = create_app()
