import logging
import os
from typing import Iterator, Optional, BinaryIO

from fastapi import APIRouter, Depends, File, Form, Query, Request, Response, UploadFile
from fastapi.responses import StreamingResponse

from videoconv.config import settings
from videoconv.errors import EngineFailure, StorageUnavailable, UploadRejected
from videoconv.models.job import JobPhase
from videoconv.schemas.convert import ConvertResponse, StatsResponse
from videoconv.services.format_policy import resolve, validate_input_format
from videoconv.services.orchestrator import FAILURE_PREFIX, ConversionOrchestrator
from videoconv.workers.scheduler import get_orchestrator

logger = logging.getLogger(__name__)

router = APIRouter()

CHUNK_SIZE = 1024 * 1024
# multipart framing on top of the file itself
MULTIPART_OVERHEAD = 64 * 1024


async def _save_upload(upload: UploadFile, path: str, max_bytes: int) -> int:
    written = 0
    try:
        with open(path, "wb") as out:
            while True:
                chunk = await upload.read(CHUNK_SIZE)
                if not chunk:
                    break
                written += len(chunk)
                if written > max_bytes:
                    raise UploadRejected(
                        f"File exceeds the {max_bytes // (1024 * 1024)}MB upload limit",
                        status_code=413,
                    )
                out.write(chunk)
    except OSError as e:
        raise StorageUnavailable(f"Cannot store upload: {e}") from e
    return written


def _iter_file(fh: BinaryIO) -> Iterator[bytes]:
    try:
        while True:
            chunk = fh.read(CHUNK_SIZE)
            if not chunk:
                break
            yield chunk
    finally:
        fh.close()


@router.post("/convert", response_model=ConvertResponse)
async def convert_video(
    request: Request,
    response: Response,
    video: Optional[UploadFile] = File(None),
    input_format: str = Form("mp4"),
    output_format: str = Form("ivf"),
    wait: bool = Query(True),
    orchestrator: ConversionOrchestrator = Depends(get_orchestrator),
):
    content_length = request.headers.get("content-length")
    if content_length and content_length.isdigit() and \
            int(content_length) > settings.MAX_UPLOAD_BYTES + MULTIPART_OVERHEAD:
        raise UploadRejected("Upload exceeds the size limit", status_code=413)
    if video is None or not video.filename:
        raise UploadRejected("No file was uploaded")

    # Reject before anything touches the disk
    resolve(os.path.splitext(video.filename)[1], output_format)
    validate_input_format(input_format)

    job_id, input_path = orchestrator.reserve_upload(video.filename)
    try:
        size = await _save_upload(video, input_path, settings.MAX_UPLOAD_BYTES)
        logger.info(f"Job {job_id}: received {video.filename} ({size} bytes)")
        job = await orchestrator.submit(input_path, input_format, output_format, job_id=job_id)
    except Exception:
        orchestrator.release_upload(job_id, input_path)
        raise
    finally:
        await video.close()

    if not wait:
        response.status_code = 202
        return ConvertResponse(job_id=job.id, filename=job.output_filename, status=job.phase.value)

    phase = await job.wait()
    if phase != JobPhase.succeeded:
        raise EngineFailure(FAILURE_PREFIX + (job.error or "unknown error"))
    return ConvertResponse(job_id=job.id, filename=job.output_filename, status=phase.value)


@router.get("/download/{filename}")
async def download_file(
    filename: str,
    orchestrator: ConversionOrchestrator = Depends(get_orchestrator),
):
    fh, size = orchestrator.open_artifact(filename)
    return StreamingResponse(
        _iter_file(fh),
        media_type="application/octet-stream",
        headers={
            "Content-Disposition": f'attachment; filename="{filename}"',
            "Content-Length": str(size),
        },
    )


@router.get("/stats", response_model=StatsResponse)
async def get_stats(orchestrator: ConversionOrchestrator = Depends(get_orchestrator)):
    return StatsResponse(**orchestrator.stats().to_dict())
