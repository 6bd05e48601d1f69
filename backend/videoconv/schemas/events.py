from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime


class JobEvent(BaseModel):
    event: str
    job_id: str
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    data: dict = Field(default_factory=dict)

    @property
    def is_terminal(self) -> bool:
        return self.event in ("job.completed", "job.failed")


class ProgressData(BaseModel):
    job_id: str
    percent: float
    elapsed_media_time: str = "00:00:00"
    fps: float = 0.0
    eta_wall_clock: Optional[str] = None
    remaining_seconds: Optional[int] = None


class CompletedData(BaseModel):
    job_id: str
    filename: str
    percent: float = 100.0


class FailedData(BaseModel):
    job_id: str
    error: str


class WebSocketMessage(BaseModel):
    event: str
    timestamp: datetime
    data: dict
