from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from ..dependencies import get_pipeline
from ..models import ticket_price
from ..pipeline import Pipeline

router = APIRouter(tags=["analytics"])


def _dollars(amount) -> str:
    return f"${amount:,}"


@router.get("/stats")
async def get_stats(pipeline: Pipeline = Depends(get_pipeline)):
    await pipeline.keep_alive()
    stats = pipeline.stats

    summary = stats.summary()
    summary["totalRevenue"] = _dollars(summary["totalRevenue"])
    events = [dict(row, revenue=_dollars(row["revenue"])) for row in stats.breakdown()]

    return {
        "summary": summary,
        "events": events,
        "recentOrders": stats.recent_orders(20),
    }


@router.get("/events/{event_type}")
async def get_event_stats(event_type: str, pipeline: Pipeline = Depends(get_pipeline)):
    stats = pipeline.stats
    event_type = event_type.lower()
    if event_type not in stats.event_counts:
        return JSONResponse(status_code=404, content={"error": "Event type not found"})

    tickets = stats.event_counts[event_type]
    return {
        "event": event_type,
        "totalTickets": tickets,
        "totalRevenue": _dollars(ticket_price(event_type) * tickets),
        "recentOrders": stats.recent_orders(10, event_type=event_type),
    }
