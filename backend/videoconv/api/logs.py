import logging
from collections import deque
from datetime import datetime
from typing import Optional

from fastapi import APIRouter
from fastapi.responses import PlainTextResponse

router = APIRouter()


class InMemoryLogHandler(logging.Handler):
    """Captures log records into a bounded deque for retrieval via API."""

    def __init__(self, max_lines: int = 2000):
        super().__init__()
        self.records: deque = deque(maxlen=max_lines)

    def emit(self, record):
        try:
            self.records.append({
                "timestamp": datetime.fromtimestamp(record.created).isoformat(),
                "level": record.levelname,
                "logger": record.name,
                "message": record.getMessage(),
            })
        except Exception:
            self.handleError(record)


# Attached to the root logger in main.py lifespan
log_handler = InMemoryLogHandler()
log_handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)-8s %(name)s: %(message)s"))


def install_log_handler():
    root = logging.getLogger()
    if log_handler not in root.handlers:
        root.addHandler(log_handler)


@router.get("/logs")
async def get_logs(
    level: Optional[str] = None,
    logger_name: Optional[str] = None,
    job_id: Optional[str] = None,
    limit: int = 500,
    offset: int = 0,
):
    """Recent log entries, newest first. ``job_id`` keeps lines for one job."""
    entries = list(log_handler.records)

    if level:
        entries = [e for e in entries if e["level"] == level.upper()]
    if logger_name:
        entries = [e for e in entries if logger_name in e["logger"]]
    if job_id:
        prefix = f"Job {job_id}:"
        entries = [e for e in entries if e["message"].startswith(prefix)]

    total = len(entries)
    entries = list(reversed(entries))[offset:offset + limit]
    return {"items": entries, "total": total}


@router.get("/logs/export")
async def export_logs():
    lines = [
        f"{e['timestamp']} {e['level']:<8} {e['logger']}: {e['message']}"
        for e in log_handler.records
    ]
    return PlainTextResponse(
        content="\n".join(lines),
        media_type="text/plain",
        headers={"Content-Disposition": f"attachment; filename=videoconv-logs-{datetime.now().strftime('%Y%m%d-%H%M%S')}.txt"},
    )
