from __future__ import annotations

import copy
import json
import logging
from typing import Any, Union

from pydantic import BaseModel, Field, StrictBool, StrictFloat, StrictInt, ValidationError

logger = logging.getLogger(__name__)

FEATURE_MAP_VERSION = 1

FlagValue = Union[StrictBool, StrictInt, StrictFloat]


class FeatureMap(BaseModel):
    """
    Versioned feature flags as stored on subscriptions and on the user snapshot.

    Stored shape: {"version": 1, "flags": {"see_who_liked": true, "boost_per_month": 3}}
    Version 0 is the legacy bare object ({"see_who_liked": true}) written by
    older code, sometimes as JSON text instead of a JSON value.
    """

    version: int = FEATURE_MAP_VERSION
    flags: dict[str, FlagValue] = Field(default_factory=dict)

    @classmethod
    def empty(cls) -> "FeatureMap":
        return cls()

    @classmethod
    def from_flags(cls, flags: dict[str, Any] | None) -> "FeatureMap":
        # plan definitions are trusted seed data, validate anyway
        return cls(flags=copy.deepcopy(flags or {}))

    @classmethod
    def parse(cls, raw: Any) -> "FeatureMap":
        """Never raises: anything unreadable becomes an empty map."""
        if raw is None:
            return cls.empty()

        if isinstance(raw, (str, bytes)):
            try:
                raw = json.loads(raw)
            except ValueError:
                logger.warning("malformed feature data (not JSON): %.80r", raw)
                return cls.empty()

        if not isinstance(raw, dict):
            logger.warning("malformed feature data (unexpected %s)", type(raw).__name__)
            return cls.empty()

        try:
            if "version" in raw and "flags" in raw:
                parsed = cls.model_validate(raw)
                if parsed.version > FEATURE_MAP_VERSION:
                    logger.warning("feature data version %s is newer than supported", parsed.version)
                    return cls.empty()
                return parsed
            # version 0: bare flags object
            return cls(flags=raw)
        except ValidationError as exc:
            logger.warning("malformed feature data: %s", exc.errors()[:1])
            return cls.empty()

    def to_storage(self) -> dict[str, Any]:
        return {"version": self.version, "flags": dict(self.flags)}

    def is_enabled(self, feature_name: str) -> bool:
        # strict: 1, "true" or a present-but-falsy key do not count
        return self.flags.get(feature_name) is True
