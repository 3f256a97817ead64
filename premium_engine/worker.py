from __future__ import annotations

import logging
import signal
import threading

from premium_engine.core.config import settings
from premium_engine.core.db import SessionLocal, configure_engine
from premium_engine.core.log import setup_logging
from premium_engine.core.schema import verify_schema
from premium_engine.services.sweeper import ExpirationSweeper

logger = logging.getLogger("premium_engine.worker")


def main() -> None:
    """Standalone expiration sweeper for deployments that don't run it inside the API process."""
    setup_logging()
    engine = configure_engine()
    if settings.schema_check_enabled:
        verify_schema(engine)

    sweeper = ExpirationSweeper(SessionLocal)
    stop = threading.Event()

    def _shutdown(signum, frame):
        logger.info("received signal %s, stopping", signum)
        stop.set()

    signal.signal(signal.SIGTERM, _shutdown)
    signal.signal(signal.SIGINT, _shutdown)

    logger.info("sweeping every %ss url=%s", settings.sweep_interval_seconds, engine.url.render_as_string(hide_password=True))
    while not stop.is_set():
        try:
            result = sweeper.run_once()
            if result.failed_users:
                logger.warning("sweep left %d user(s) unreconciled", len(result.failed_users))
        except Exception:
            logger.exception("sweep pass failed, retrying in %ss", settings.sweep_interval_seconds)
        stop.wait(settings.sweep_interval_seconds)

    engine.dispose()


if __name__ == "__main__":
    main()
