"""Owns every conversion job from submission to artifact expiry.

The per-job consumer task is the only writer of a job's phase and percent.
Terminal handling is check-and-set: the first terminal event moves the job,
bumps the counters and schedules retention; later ones are dropped.
"""
import asyncio
import logging
import os
import time
from collections import OrderedDict
from typing import BinaryIO, Dict, List, Optional, Set, Tuple

from videoconv.config import settings
from videoconv.errors import (
    ArtifactExpired, ArtifactNotFound, JobNotFound, StorageUnavailable,
)
from videoconv.models.job import Job, JobPhase, new_job_id
from videoconv.schemas.events import CompletedData, FailedData, JobEvent, ProgressData
from videoconv.services.engine import (
    EngineFailed, EngineHandle, EngineProgress, EngineSucceeded, TranscodeEngine,
)
from videoconv.services.events import EventBroadcaster, Subscription
from videoconv.services.format_policy import normalize_extension, resolve, validate_input_format
from videoconv.services.statistics import ConversionStats, StatsSnapshot
from videoconv.utils.file_utils import (
    ensure_directory, format_clock, format_timemark, is_safe_filename, remove_file,
)
from videoconv.workers.retention import RetentionReaper

logger = logging.getLogger(__name__)

FAILURE_PREFIX = "Video conversion failed: "
EXPIRED_MEMORY = 1000


class ConversionOrchestrator:
    def __init__(
        self,
        engine: Optional[TranscodeEngine] = None,
        upload_dir: Optional[str] = None,
        output_dir: Optional[str] = None,
        retention_seconds: Optional[float] = None,
        job_timeout_seconds: Optional[float] = None,
        reaper: Optional[RetentionReaper] = None,
        stats: Optional[ConversionStats] = None,
        broadcaster: Optional[EventBroadcaster] = None,
    ):
        self.engine = engine or TranscodeEngine()
        self.upload_dir = os.path.abspath(upload_dir or settings.UPLOAD_DIR)
        self.output_dir = os.path.abspath(output_dir or settings.OUTPUT_DIR)
        self.retention_seconds = (
            settings.RETENTION_SECONDS if retention_seconds is None else retention_seconds
        )
        self.job_timeout_seconds = (
            settings.JOB_TIMEOUT_SECONDS if job_timeout_seconds is None else job_timeout_seconds
        )
        self.reaper = reaper or RetentionReaper()
        self.stats_aggregator = stats or ConversionStats()
        self.broadcaster = broadcaster or EventBroadcaster()

        self._jobs: Dict[str, Job] = {}
        self._reserved: Set[str] = set()
        self._handles: Dict[str, EngineHandle] = {}
        self._consumers: Dict[str, asyncio.Task] = {}
        # artifact path -> owning job id, until its retention entry fires
        self._artifact_owner: Dict[str, str] = {}
        self._expired: "OrderedDict[str, None]" = OrderedDict()

    # ── Storage ──────────────────────────────────────────────────────

    def prepare_storage(self):
        ensure_directory(self.upload_dir)
        ensure_directory(self.output_dir)

    def _allocate_id(self) -> str:
        job_id = new_job_id()
        while job_id in self._jobs or job_id in self._reserved:
            job_id = new_job_id()
        return job_id

    def reserve_upload(self, filename: str) -> Tuple[str, str]:
        """Validate an upload's extension and reserve a job id and storage path for it."""
        ext = normalize_extension(os.path.splitext(filename or "")[1])
        validate_input_format(ext)
        self.prepare_storage()
        job_id = self._allocate_id()
        self._reserved.add(job_id)
        return job_id, os.path.join(self.upload_dir, f"{job_id}.{ext}")

    def release_upload(self, job_id: str, input_path: str):
        """Give back a reservation whose upload never reached ``submit``."""
        self._reserved.discard(job_id)
        remove_file(input_path)

    # ── Submission ───────────────────────────────────────────────────

    async def submit(self, input_path: str, input_format: Optional[str] = None,
                     output_format: str = "ivf", job_id: Optional[str] = None) -> Job:
        input_ext = os.path.splitext(input_path)[1]
        profile = resolve(input_ext, output_format)
        declared = validate_input_format(input_format) if input_format else normalize_extension(input_ext)
        self.prepare_storage()
        if not os.path.isfile(input_path):
            raise StorageUnavailable(f"Input file is not available: {input_path}")

        if job_id is None:
            job_id = self._allocate_id()
        elif job_id in self._jobs:
            raise StorageUnavailable(f"Job id already in use: {job_id}")
        self._reserved.discard(job_id)

        job = Job(
            job_id=job_id,
            input_path=os.path.abspath(input_path),
            output_path=os.path.join(self.output_dir, f"{job_id}.{profile.container}"),
            input_format=declared,
            output_format=profile.container,
        )
        self._jobs[job_id] = job
        logger.info(f"Job {job.id}: starting conversion {job.input_path} -> {job.output_path}")
        logger.info(f"Job {job.id}: input format {job.input_format}, output format {job.output_format}")

        job.transition(JobPhase.running)
        self._publish(JobEvent(event="job.started", job_id=job.id, data={"job_id": job.id, "status": "started"}))
        try:
            handle = self.engine.start(job, profile)
        except Exception as e:
            logger.error(f"Job {job.id}: engine failed to start: {e}")
            self._finish(job, EngineFailed(str(e)))
            return job

        self._handles[job.id] = handle
        self._consumers[job.id] = asyncio.create_task(self._consume(job, handle))
        return job

    async def _consume(self, job: Job, handle: EngineHandle):
        deadline = None
        if self.job_timeout_seconds and self.job_timeout_seconds > 0:
            deadline = time.monotonic() + self.job_timeout_seconds
        try:
            while True:
                timeout = None if deadline is None else max(0.0, deadline - time.monotonic())
                try:
                    event = await asyncio.wait_for(handle.events.get(), timeout)
                except asyncio.TimeoutError:
                    logger.warning(
                        f"Job {job.id}: no terminal event within {self.job_timeout_seconds:.0f}s, cancelling"
                    )
                    handle.cancel()
                    self._finish(job, EngineFailed(f"Timed out after {self.job_timeout_seconds:.0f}s"))
                    break
                if event is None:
                    break
                self.handle_event(job, event)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Job {job.id}: event handling error: {e}")
            self._finish(job, EngineFailed(str(e)))
        finally:
            if not job.is_terminal:
                self._finish(job, EngineFailed("Engine stopped without a result"))
            self._handles.pop(job.id, None)
            self._consumers.pop(job.id, None)

    def handle_event(self, job: Job, event) -> bool:
        """Apply one adapter event to ``job``. Returns False if it was ignored."""
        if isinstance(event, EngineProgress):
            return self._on_progress(job, event)
        if isinstance(event, (EngineSucceeded, EngineFailed)):
            return self._finish(job, event)
        logger.warning(f"Job {job.id}: unknown engine event {event!r}")
        return False

    def _on_progress(self, job: Job, progress: EngineProgress) -> bool:
        if job.phase != JobPhase.running:
            logger.debug(f"Job {job.id}: dropping progress in phase {job.phase.value}")
            return False
        percent = job.clamp_percent(progress.percent)
        eta, remaining = self._estimate(job, percent)
        data = ProgressData(
            job_id=job.id,
            percent=round(percent, 2),
            elapsed_media_time=format_timemark(progress.media_time_seconds),
            fps=round(progress.fps or 0, 2),
            eta_wall_clock=eta,
            remaining_seconds=remaining,
        )
        self._publish(JobEvent(event="job.progress", job_id=job.id, data=data.model_dump()))
        logger.debug(
            f"Job {job.id}: progress {data.percent}% | time {data.elapsed_media_time} | fps {data.fps}"
        )
        return True

    @staticmethod
    def _estimate(job: Job, percent: float) -> Tuple[Optional[str], Optional[int]]:
        """Wall-clock ETA from elapsed time and completed ratio; unknown at 0%."""
        if percent <= 0 or job.started_monotonic is None:
            return None, None
        elapsed = time.monotonic() - job.started_monotonic
        remaining = max(0.0, elapsed * (100.0 - percent) / percent)
        return format_clock(remaining), int(round(remaining))

    def _finish(self, job: Job, event) -> bool:
        succeeded = isinstance(event, EngineSucceeded)
        target = JobPhase.succeeded if succeeded else JobPhase.failed
        if not job.transition(target):
            logger.warning(
                f"Job {job.id}: ignoring terminal event {target.value}, already {job.phase.value}"
            )
            return False

        self.stats_aggregator.record(succeeded)
        if succeeded:
            job.clamp_percent(100.0)
            self._schedule_retention(job, [job.input_path, job.output_path])
            logger.info(f"Job {job.id}: conversion finished: {job.output_path}")
            data = CompletedData(job_id=job.id, filename=job.output_filename)
            self._publish(JobEvent(event="job.completed", job_id=job.id, data=data.model_dump()))
        else:
            job.error = event.message
            if remove_file(job.output_path):
                logger.info(f"Job {job.id}: removed partial output {job.output_path}")
            self._schedule_retention(job, [job.input_path])
            logger.error(f"Job {job.id}: conversion failed: {event.message}")
            data = FailedData(job_id=job.id, error=FAILURE_PREFIX + event.message)
            self._publish(JobEvent(event="job.failed", job_id=job.id, data=data.model_dump()))
        job.release_waiters()
        return True

    # ── Retention ────────────────────────────────────────────────────

    def _schedule_retention(self, job: Job, paths: List[str]):
        for path in paths:
            self._artifact_owner[path] = job.id
            self.reaper.schedule(path, self.retention_seconds, on_expired=self.artifact_expired)

    def artifact_expired(self, path: str):
        """Called after an artifact is deleted by the reaper or the sweep."""
        if os.path.dirname(os.path.abspath(path)) == self.output_dir:
            self._remember_expired(os.path.basename(path))
        job_id = self._artifact_owner.pop(path, None)
        if job_id is None:
            return
        if job_id not in self._artifact_owner.values():
            job = self._jobs.get(job_id)
            if job is not None and job.is_terminal:
                del self._jobs[job_id]
                logger.debug(f"Job {job_id}: all artifacts expired, record released")

    def _remember_expired(self, filename: str):
        self._expired[filename] = None
        self._expired.move_to_end(filename)
        while len(self._expired) > EXPIRED_MEMORY:
            self._expired.popitem(last=False)

    # ── Queries ──────────────────────────────────────────────────────

    def subscribe(self) -> Subscription:
        return self.broadcaster.subscribe()

    def stats(self) -> StatsSnapshot:
        return self.stats_aggregator.snapshot()

    def get_job(self, job_id: str) -> Job:
        job = self._jobs.get(job_id)
        if job is None:
            raise JobNotFound(job_id)
        return job

    def list_jobs(self) -> List[Job]:
        return sorted(self._jobs.values(), key=lambda j: j.created_at, reverse=True)

    @property
    def active_count(self) -> int:
        return len(self._handles)

    def open_artifact(self, filename: str) -> Tuple[BinaryIO, int]:
        """Open a finished output for reading.

        The file is opened before any bytes are sent, so a deletion racing a
        download either fails it cleanly here or leaves the open handle intact.
        """
        if not is_safe_filename(filename):
            raise ArtifactNotFound("File does not exist or has been deleted")
        job = self._jobs.get(os.path.splitext(filename)[0])
        if job is not None and (job.phase != JobPhase.succeeded or job.output_filename != filename):
            raise ArtifactNotFound("File does not exist or has been deleted")

        path = os.path.join(self.output_dir, filename)
        try:
            fh = open(path, "rb")
        except FileNotFoundError:
            if filename in self._expired:
                raise ArtifactExpired("File has expired and was deleted")
            raise ArtifactNotFound("File does not exist or has been deleted")
        except OSError:
            raise ArtifactNotFound("File does not exist or has been deleted")
        return fh, os.fstat(fh.fileno()).st_size

    # ── Control ──────────────────────────────────────────────────────

    def cancel(self, job_id: str) -> bool:
        job = self.get_job(job_id)
        if job.is_terminal:
            return False
        handle = self._handles.get(job_id)
        if handle is None:
            return False
        logger.info(f"Job {job_id}: cancellation requested")
        self._publish(JobEvent(
            event="job.status_changed", job_id=job_id,
            data={"job_id": job_id, "status": "cancelling"},
        ))
        handle.cancel()
        return True

    async def shutdown(self, timeout: float = 10.0):
        for handle in list(self._handles.values()):
            handle.cancel()
        consumers = list(self._consumers.values())
        if consumers:
            done, pending = await asyncio.wait(consumers, timeout=timeout)
            for task in pending:
                task.cancel()
            # cancelled consumers still fail their jobs; let that land before the reaper stops
            await asyncio.gather(*pending, return_exceptions=True)
        await self.reaper.stop()
        self.broadcaster.close()

    def _publish(self, event: JobEvent):
        self.broadcaster.publish(event)
