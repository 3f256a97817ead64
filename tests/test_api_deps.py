"""
Tests for the FastAPI dependencies guarding premium routes.
"""
import uuid

import pytest
from fastapi import Depends, FastAPI
from fastapi.testclient import TestClient
from jose import JWTError, jwt

from premium_engine.api.deps import get_entitlements, require_feature, require_premium
from premium_engine.core.config import settings
from premium_engine.core.db import get_db
from premium_engine.main import app as engine_app
from premium_engine.models import User
from premium_engine.services.auth import decode_token


def _token(user_id) -> str:
    return jwt.encode({"sub": str(user_id)}, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def _auth(user_id) -> dict:
    return {"Authorization": f"Bearer {_token(user_id)}"}


@pytest.fixture
def client(session_factory, resolver):
    app = FastAPI()

    @app.get("/likes")
    def likes(user: User = Depends(require_feature("see_who_liked"))):
        return {"user": str(user.id)}

    @app.get("/passport")
    def passport(user: User = Depends(require_feature("passport"))):
        return {"user": str(user.id)}

    @app.get("/premium")
    def premium(user: User = Depends(require_premium())):
        return {"user": str(user.id)}

    @app.get("/dashboard")
    def dashboard(user: User = Depends(require_premium(allow_admin=True))):
        return {"user": str(user.id)}

    def _db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = _db
    app.dependency_overrides[get_entitlements] = lambda: resolver
    return TestClient(app)


def test_missing_or_bad_token_is_401(client, user):
    assert client.get("/premium").status_code == 401
    assert client.get("/premium", headers={"Authorization": "Bearer garbage"}).status_code == 401
    assert client.get("/premium", headers=_auth(uuid.uuid4())).status_code == 401


def test_free_user_gets_402(client, user):
    response = client.get("/likes", headers=_auth(user.id))
    assert response.status_code == 402
    assert response.json()["detail"]["feature"] == "see_who_liked"

    assert client.get("/premium", headers=_auth(user.id)).status_code == 402


def test_feature_outside_plan_gets_403(client, ledger, plans, user):
    ledger.create_subscription(user.id, plans["Gold"].id, "card", "tx-1", "99.90")

    assert client.get("/likes", headers=_auth(user.id)).status_code == 200
    assert client.get("/premium", headers=_auth(user.id)).status_code == 200

    response = client.get("/passport", headers=_auth(user.id))
    assert response.status_code == 403
    assert response.json()["detail"]["feature"] == "passport"


def test_admin_passes_admin_aware_gate(client, make_user):
    staff = make_user(role="admin")
    assert client.get("/dashboard", headers=_auth(staff.id)).status_code == 200
    assert client.get("/premium", headers=_auth(staff.id)).status_code == 402


def test_health():
    # no `with`: lifespan (database, sweeper) stays off
    response = TestClient(engine_app).get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_decode_token_checks_the_signature():
    user_id = uuid.uuid4()
    assert decode_token(_token(user_id))["sub"] == str(user_id)

    forged = jwt.encode({"sub": str(user_id)}, "not-the-secret", algorithm=settings.jwt_algorithm)
    with pytest.raises(JWTError):
        decode_token(forged)
