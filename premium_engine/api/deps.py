from __future__ import annotations

from typing import Callable

from fastapi import Depends, HTTPException, status

from premium_engine.core.db import SessionLocal
from premium_engine.models import User
from premium_engine.schemas.billing import GateDecision
from premium_engine.services.auth import get_current_user
from premium_engine.services.entitlements import FEATURE_NOT_IN_PLAN, EntitlementResolver


def get_entitlements() -> EntitlementResolver:
    return EntitlementResolver(SessionLocal)


def _raise_denied(decision: GateDecision) -> None:
    if decision.allowed:
        return
    if decision.reason == FEATURE_NOT_IN_PLAN:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={"error": "Feature not available in your plan", "feature": decision.feature},
        )
    raise HTTPException(
        status_code=status.HTTP_402_PAYMENT_REQUIRED,
        detail={"error": "Premium subscription required", "feature": decision.feature},
    )


def require_premium(allow_admin: bool = False) -> Callable[..., User]:
    """Dependency-guard: user must be premium right now (admins pass when allow_admin)."""

    def dependency(
        user: User = Depends(get_current_user),
        entitlements: EntitlementResolver = Depends(get_entitlements),
    ) -> User:
        if allow_admin:
            decision = entitlements.require_premium_or_admin(user)
        else:
            decision = entitlements.require_premium(user.id)
        _raise_denied(decision)
        return user

    return dependency


def require_feature(feature_name: str) -> Callable[..., User]:
    """Dependency-guard: user must be premium and the plan must switch `feature_name` on."""

    def dependency(
        user: User = Depends(get_current_user),
        entitlements: EntitlementResolver = Depends(get_entitlements),
    ) -> User:
        _raise_denied(entitlements.require_feature(user.id, feature_name))
        return user

    return dependency
