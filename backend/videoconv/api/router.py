from fastapi import APIRouter
from videoconv.api import convert, jobs, health, logs

api_router = APIRouter()

api_router.include_router(health.router, tags=["health"])
api_router.include_router(convert.router, tags=["convert"])
api_router.include_router(jobs.router, prefix="/jobs", tags=["jobs"])
api_router.include_router(logs.router, tags=["logs"])
