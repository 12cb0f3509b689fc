"""Queue depth API endpoints."""

from fastapi import APIRouter

from jobscope.dependencies import Probe
from jobscope.schemas.queue import QueueDepth

router = APIRouter()


@router.get("/queues/depth", response_model=dict[str, QueueDepth])
async def queue_depth(probe: Probe) -> dict[str, QueueDepth]:
    """
    Pending jobs per queue with health status.

    Never empty: when the queue backend cannot be read, the default queue is
    reported with depth 0.
    """
    return await probe.depth_with_metadata_always()
