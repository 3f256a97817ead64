from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from premium_engine.core.config import settings
from premium_engine.core.db import SessionLocal, configure_engine
from premium_engine.core.log import setup_logging
from premium_engine.core.schema import verify_schema
from premium_engine.services.sweeper import ExpirationSweeper, SweepScheduler

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    engine = configure_engine()
    if settings.schema_check_enabled:
        verify_schema(engine)

    scheduler: SweepScheduler | None = None
    if settings.sweep_enabled:
        scheduler = SweepScheduler(ExpirationSweeper(SessionLocal))
        scheduler.start()

    try:
        yield
    finally:
        if scheduler is not None:
            scheduler.stop()
        engine.dispose()
        logger.info("premium engine shut down")


app = FastAPI(title="Premium Engine", version="0.1.0", lifespan=lifespan)


@app.get("/health")
def health():
    return {"status": "ok"}
