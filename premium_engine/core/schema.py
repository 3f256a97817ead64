from __future__ import annotations

import logging

from alembic.runtime.migration import MigrationContext
from sqlalchemy import Engine, inspect

from premium_engine.core.errors import SchemaVersionMismatch

logger = logging.getLogger(__name__)

# head of alembic/versions; bump together with every new migration
SCHEMA_REVISION = "b7e2c41f9a30"

REQUIRED_TABLES = frozenset({"users", "plans", "subscriptions", "payments", "feature_usage"})


def verify_schema(engine: Engine, expected_revision: str = SCHEMA_REVISION) -> None:
    """Startup check: all tables exist and the database is at the expected migration."""
    with engine.connect() as conn:
        existing = set(inspect(conn).get_table_names())
        missing = sorted(REQUIRED_TABLES - existing)
        if missing:
            raise SchemaVersionMismatch(f"missing tables: {', '.join(missing)}")

        current = MigrationContext.configure(conn).get_current_revision()

    if current != expected_revision:
        raise SchemaVersionMismatch(
            f"database is at revision {current!r}, engine expects {expected_revision!r}; run `alembic upgrade head`"
        )
    logger.info("schema ok at revision %s", current)
