from fastapi import APIRouter, Depends

from ..dependencies import get_pipeline
from ..pipeline import Pipeline

router = APIRouter(tags=["fulfillment"])


@router.get("/ping")
async def ping(pipeline: Pipeline = Depends(get_pipeline)):
    """Check the fulfillment consumer and restart it if it has dropped."""
    running = await pipeline.fulfillment.ensure_running()
    return {
        "status": "ok" if running else "degraded",
        "broker": pipeline.broker.state.value,
        "consumer": pipeline.fulfillment.state.model_dump(),
        "processed": pipeline.worker.processed,
        "failed": pipeline.worker.failed,
    }
