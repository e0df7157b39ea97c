"""
FastAPI app entrypoint.

Notification core for the task app: queue, priorities, delivery windows, APNs push.
Set SCHEDULER_ENABLED=false on API-only replicas; the queue drain must run in one process.
"""
import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

# Load .env from backend/ before any app code
load_dotenv(Path(__file__).resolve().parent.parent / ".env")

from app.api.routes import notifications, push
from app.config import settings
from app.scheduler.notification_scheduler import NotificationScheduler

if settings.openai_api_key:
    os.environ["OPENAI_API_KEY"] = settings.openai_api_key

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    scheduler = NotificationScheduler()
    app.state.notification_scheduler = scheduler
    if settings.scheduler_enabled:
        scheduler.start()
    else:
        logger.info("SCHEDULER_ENABLED=false; notification jobs not started in this process")
    logger.info("Backend ready (AI content: %s)", "on" if settings.ai_enabled else "fallback templates")
    yield
    scheduler.stop()


app = FastAPI(title="Task Notifications", version="0.1.0", lifespan=lifespan)

# CORS: dev origins + optional CORS_ORIGINS env (comma-separated) for production frontend
_cors_origins = [
    "http://localhost:5173",
    "http://127.0.0.1:5173",
    "http://localhost:3000",
    "http://127.0.0.1:3000",
]
_cors_extra = os.getenv("CORS_ORIGINS", "")
if _cors_extra:
    _cors_origins.extend(o.strip() for o in _cors_extra.split(",") if o.strip())
app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(notifications.router, prefix="/v1", tags=["notifications"])
app.include_router(push.router, prefix="/v1", tags=["push"])


@app.get("/", include_in_schema=False)
def root():
    """Root: point to API docs and health."""
    return {"message": "Task Notifications API", "docs": "/docs", "health": "/health"}


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}
