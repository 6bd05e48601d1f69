from fastapi import APIRouter, Depends

from videoconv.schemas.convert import HealthResponse
from videoconv.services.orchestrator import ConversionOrchestrator
from videoconv.workers.scheduler import get_orchestrator

router = APIRouter()


@router.get("/health", response_model=HealthResponse)
async def health(orchestrator: ConversionOrchestrator = Depends(get_orchestrator)):
    return HealthResponse(
        status="ok",
        active_jobs=orchestrator.active_count,
        subscribers=orchestrator.broadcaster.subscriber_count,
    )
