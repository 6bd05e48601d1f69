from pydantic import BaseModel
from typing import Optional, List
from datetime import datetime


class ConvertResponse(BaseModel):
    success: bool = True
    job_id: str
    filename: str
    status: Optional[str] = None


class ErrorResponse(BaseModel):
    success: bool = False
    error: str
    kind: str


class StatsResponse(BaseModel):
    total: int
    succeeded: int
    failed: int


class JobResponse(BaseModel):
    job_id: str
    phase: str
    input_format: str
    output_format: str
    filename: Optional[str] = None
    percent: float = 0.0
    error: Optional[str] = None
    created_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    terminal_at: Optional[datetime] = None


class JobListResponse(BaseModel):
    items: List[JobResponse]
    total: int


class JobUpdate(BaseModel):
    status: Optional[str] = None


class HealthResponse(BaseModel):
    status: str
    active_jobs: int
    subscribers: int
