import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from videoconv.config import settings
from videoconv.api.router import api_router
from videoconv.api.websocket import websocket_router
from videoconv.api.errors import register_error_handlers
from videoconv.api.logs import install_log_handler
from videoconv.workers.scheduler import start_scheduler, stop_scheduler

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logging.basicConfig(level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))
    install_log_handler()
    logger.info("Starting videoconv backend...")
    await start_scheduler()
    logger.info(f"videoconv backend ready on port {settings.API_PORT}")
    yield
    await stop_scheduler()
    logger.info("Shutting down videoconv backend...")


app = FastAPI(
    title="videoconv API",
    description="Upload, transcode and download video files",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_error_handlers(app)
app.include_router(api_router, prefix="/api")
app.include_router(websocket_router)
