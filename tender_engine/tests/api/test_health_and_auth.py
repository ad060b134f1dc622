import inspect

from fastapi.routing import APIRoute
from jose import jwt

from tender_engine.core.config import get_settings
from tender_engine.tests.factories import FREELANCER_A, auth


def _token(claims):
    s = get_settings()
    return jwt.encode(claims, s.jwt_secret_key, algorithm=s.jwt_algorithm)


def test_health(client):
    r = client.get("/api/v1/health")
    assert r.status_code == 200
    assert r.json()["status"] == "ok"
    assert r.headers["X-Request-Id"]


def test_request_id_is_echoed(client):
    r = client.get("/api/v1/health", headers={"X-Request-Id": "req-123"})
    assert r.headers["X-Request-Id"] == "req-123"
    assert r.json()["request_id"] == "req-123"


def test_missing_token_rejected(client):
    r = client.get("/api/v1/tenders")
    assert r.status_code in (401, 403)


def test_bad_signature_rejected(client):
    forged = jwt.encode({"sub": "u-x", "role": "freelancer"}, "wrong-key", algorithm="HS256")
    r = client.get("/api/v1/tenders", headers={"Authorization": f"Bearer {forged}"})
    assert r.status_code == 401


def test_token_without_role_rejected(client):
    r = client.get(
        "/api/v1/tenders", headers={"Authorization": f"Bearer {_token({'sub': 'u-x'})}"}
    )
    assert r.status_code == 401


def test_system_role_never_accepted_from_token(client):
    token = _token({"sub": "system", "role": "system"})
    r = client.get("/api/v1/tenders", headers={"Authorization": f"Bearer {token}"})
    assert r.status_code == 401


def test_valid_token_lists_tenders(client):
    r = client.get("/api/v1/tenders", headers=auth(FREELANCER_A))
    assert r.status_code == 200
    body = r.json()
    assert body["items"] == []
    assert body["total"] == 0


def test_database_routes_run_in_threadpool(client):
    # sync endpoints keep blocking Session calls off the event loop
    db_routes = [
        route
        for route in client.app.routes
        if isinstance(route, APIRoute)
        and route.path.startswith(("/api/v1/tenders", "/api/v1/proposals"))
    ]
    assert db_routes
    assert [r.path for r in db_routes if inspect.iscoroutinefunction(r.endpoint)] == []
