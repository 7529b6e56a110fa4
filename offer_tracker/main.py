# offer_tracker/main.py

from contextlib import asynccontextmanager

from fastapi import FastAPI

from offer_tracker import models  # noqa: F401  registers all tables
from offer_tracker.core.logging_config import configure_logging
from offer_tracker.routes import health
from offer_tracker.scheduler import start_scheduler, stop_scheduler


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    await start_scheduler()
    try:
        yield  # This is where the app runs
    finally:
        await stop_scheduler()

app = FastAPI(
    title="Offer Tracker",
    lifespan=lifespan
)

app.include_router(health.router)
