import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
import uvicorn
from apscheduler.schedulers.background import BackgroundScheduler

from auth import auth_router
from config import get_settings
from database import SessionLocal, init_db
from errors import register_error_handlers
from crud import purge_expired_invites
from invites import invites_router
from observability import setup_logging
from router import router

logger = logging.getLogger(__name__)


def purge_invites_job():
    with SessionLocal() as db:
        removed = purge_expired_invites(db)
    if removed:
        logger.info("Purged %d expired invites", removed)


def build_scheduler() -> BackgroundScheduler:
    scheduler = BackgroundScheduler()
    scheduler.add_job(purge_invites_job, "cron", hour=0, minute=0)  # daily at midnight
    return scheduler


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    setup_logging(settings.log_level, settings.log_format)
    init_db()

    scheduler = None
    if settings.scheduler_enabled:
        scheduler = build_scheduler()
        scheduler.start()
    logger.info("Group savings API started")
    yield
    if scheduler is not None:
        scheduler.shutdown(wait=False)
    logger.info("Group savings API shutting down")


def create_app() -> FastAPI:
    app = FastAPI(title="Group Savings Tracker API", lifespan=lifespan)
    register_error_handlers(app)
    app.include_router(router, prefix="/api", tags=["groups"])
    app.include_router(invites_router, prefix="/api", tags=["invites"])
    app.include_router(auth_router, prefix="/auth", tags=["authentication"])

    @app.get("/")
    def home():
        return {"message": "Welcome to Group Savings Tracker API"}

    return app


app = create_app()


if __name__ == "__main__":
    uvicorn.run(app, host="127.0.0.1", port=8000)
