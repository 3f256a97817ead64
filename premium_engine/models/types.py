from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import JSON, DateTime
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.types import TypeDecorator

from premium_engine.core.clock import as_utc_aware


class UTCDateTime(TypeDecorator):
    """Timezone-aware UTC datetimes on every backend (SQLite drops tzinfo)."""

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect):
        if value is None:
            return None
        value = as_utc_aware(value)
        if dialect.name == "sqlite":
            return value.replace(tzinfo=None)
        return value.astimezone(timezone.utc)

    def process_result_value(self, value: datetime | None, dialect):
        if value is None:
            return None
        return as_utc_aware(value)


# JSONB on postgres, plain JSON elsewhere
JSONDocument = JSON().with_variant(JSONB(), "postgresql")
