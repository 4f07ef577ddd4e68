from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import AliasChoices, BaseModel, Field

from ..dependencies import get_pipeline
from ..errors import InvalidEventType
from ..models import EVENT_DESCRIPTIONS, VALID_EVENTS
from ..pipeline import Pipeline

router = APIRouter(tags=["orders"])


class OrderRequest(BaseModel):
    """Body of POST /order. `event` is accepted as the older name of `eventType`."""

    event_type: str = Field(validation_alias=AliasChoices("eventType", "event"))
    customer: str = Field(min_length=1)
    quantity: int = Field(default=1, ge=1)


def _order_json(order) -> dict:
    return order.model_dump(mode="json", by_alias=True)


@router.post("/order")
async def create_order(req: OrderRequest, pipeline: Pipeline = Depends(get_pipeline)):
    await pipeline.keep_alive()
    try:
        order = await pipeline.intake.submit_order(req.event_type, req.customer, req.quantity)
    except InvalidEventType as exc:
        return JSONResponse(
            status_code=400,
            content={"error": "Invalid event type", "validEvents": exc.valid_events},
        )

    return {
        "orderId": order.id,
        "status": "processing",
        "message": f"Your {order.event_type} ticket order is being processed!",
    }


@router.get("/orders")
async def list_orders(pipeline: Pipeline = Depends(get_pipeline)):
    orders = pipeline.intake.list_orders()
    return {
        "total": len(orders),
        "orders": [_order_json(o) for o in reversed(orders[-50:])],
    }


@router.get("/orders/customer/{name}")
async def list_customer_orders(name: str, pipeline: Pipeline = Depends(get_pipeline)):
    orders = pipeline.intake.list_orders_by_customer(name)
    return {
        "customer": name,
        "totalOrders": len(orders),
        "orders": [_order_json(o) for o in orders],
    }


@router.get("/orders/{order_id}")
async def get_order(order_id: str, pipeline: Pipeline = Depends(get_pipeline)):
    try:
        order = pipeline.intake.get_order(int(order_id))
    except ValueError:
        order = None
    if order is None:
        return JSONResponse(status_code=404, content={"error": "Order not found"})
    return _order_json(order)


@router.get("/events")
async def list_event_types():
    return {"events": VALID_EVENTS, "description": EVENT_DESCRIPTIONS}
