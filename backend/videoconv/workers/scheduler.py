import asyncio
import logging
from typing import Optional

from videoconv.api.websocket import forward_events
from videoconv.config import settings
from videoconv.errors import StorageUnavailable
from videoconv.services.orchestrator import ConversionOrchestrator
from videoconv.workers.retention import RetentionSweeper

logger = logging.getLogger(__name__)

_orchestrator: Optional[ConversionOrchestrator] = None
_sweeper: Optional[RetentionSweeper] = None
_sweep_task: Optional[asyncio.Task] = None
_relay_task: Optional[asyncio.Task] = None


async def start_scheduler():
    global _orchestrator, _sweeper, _sweep_task, _relay_task

    _orchestrator = ConversionOrchestrator()
    try:
        _orchestrator.prepare_storage()
    except StorageUnavailable as e:
        # submissions retry this and fail with 503 on their own
        logger.error(f"Storage not ready at startup: {e.message}")
    if settings.SWEEP_MAX_AGE_SECONDS > settings.RETENTION_SECONDS:
        logger.warning(
            f"SWEEP_MAX_AGE_SECONDS ({settings.SWEEP_MAX_AGE_SECONDS:.0f}s) exceeds RETENTION_SECONDS "
            f"({settings.RETENTION_SECONDS:.0f}s): files orphaned by a restart can outlive "
            f"retention + sweep interval"
        )
    _sweeper = RetentionSweeper(
        [_orchestrator.upload_dir, _orchestrator.output_dir],
        interval=settings.SWEEP_INTERVAL_SECONDS,
        max_age=settings.SWEEP_MAX_AGE_SECONDS,
        on_removed=_orchestrator.artifact_expired,
    )

    _sweep_task = asyncio.create_task(_sweeper.start())
    _relay_task = asyncio.create_task(forward_events(_orchestrator.subscribe()))
    logger.info(
        f"Scheduler started: uploads={_orchestrator.upload_dir} outputs={_orchestrator.output_dir} "
        f"retention={_orchestrator.retention_seconds}s"
    )


def get_orchestrator() -> ConversionOrchestrator:
    if _orchestrator is None:
        raise StorageUnavailable("Conversion service is not running")
    return _orchestrator


async def stop_scheduler():
    global _orchestrator, _sweeper, _sweep_task, _relay_task

    if _sweeper:
        await _sweeper.stop()
    if _sweep_task:
        _sweep_task.cancel()
        try:
            await _sweep_task
        except asyncio.CancelledError:
            pass
    if _orchestrator:
        await _orchestrator.shutdown()
    if _sweeper and settings.SWEEP_ON_SHUTDOWN:
        logger.info("Shutting down, sweeping expired files...")
        try:
            _sweeper.sweep_once()
        except Exception as e:
            logger.error(f"Shutdown sweep failed: {e}")
    if _relay_task:
        try:
            await asyncio.wait_for(_relay_task, timeout=5)
        except (asyncio.TimeoutError, asyncio.CancelledError):
            pass

    _orchestrator = None
    _sweeper = None
    _sweep_task = None
    _relay_task = None
    logger.info("Scheduler stopped")
