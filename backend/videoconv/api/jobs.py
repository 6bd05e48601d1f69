from fastapi import APIRouter, Depends

from videoconv.errors import InvalidRequest
from videoconv.schemas.convert import JobListResponse, JobResponse, JobUpdate
from videoconv.services.orchestrator import ConversionOrchestrator
from videoconv.workers.scheduler import get_orchestrator

router = APIRouter()


@router.get("", response_model=JobListResponse)
async def list_jobs(orchestrator: ConversionOrchestrator = Depends(get_orchestrator)):
    jobs = orchestrator.list_jobs()
    return JobListResponse(items=[JobResponse(**j.to_dict()) for j in jobs], total=len(jobs))


@router.get("/{job_id}", response_model=JobResponse)
async def get_job(job_id: str, orchestrator: ConversionOrchestrator = Depends(get_orchestrator)):
    return JobResponse(**orchestrator.get_job(job_id).to_dict())


@router.patch("/{job_id}")
async def update_job(
    job_id: str,
    update: JobUpdate,
    orchestrator: ConversionOrchestrator = Depends(get_orchestrator),
):
    if update.status != "cancelled":
        raise InvalidRequest(f"Unsupported status change: {update.status}")

    # job.status_changed goes out on the job's own event stream
    cancelled = orchestrator.cancel(job_id)
    return {"status": "updated", "job_id": job_id, "cancelled": cancelled}
