import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from marketplace.api import routes_health
from marketplace.domain.ops.db_models import JobHeartbeat
from marketplace.infra.metrics import configure_metrics
from marketplace.main import app
from marketplace.settings import settings
from tests.conftest import CLIENT_ID, OTHER_CLIENT_ID, PROVIDER_ID, auth_headers, insert_service, insert_slot


async def _set_job_heartbeat(async_session_maker, age_seconds: int = 0) -> None:
    async with async_session_maker() as session:
        await session.merge(
            JobHeartbeat(
                name="jobs-runner",
                last_heartbeat=datetime.now(timezone.utc) - timedelta(seconds=age_seconds),
                consecutive_failures=0,
            )
        )
        await session.commit()


@pytest.fixture(autouse=True)
def reset_head_cache():
    routes_health._HEAD_CACHE.update({"timestamp": 0.0, "heads": None, "skip_reason": None})
    yield
    routes_health._HEAD_CACHE.update({"timestamp": 0.0, "heads": None, "skip_reason": None})


def _check(payload: dict, name: str) -> dict:
    return next(check for check in payload["checks"] if check["name"] == name)


def test_healthz(client):
    assert client.get("/healthz").json() == {"status": "ok"}
    assert client.head("/healthz").status_code == 200


def test_readyz_reports_database_and_skipped_migrations(monkeypatch, client):
    monkeypatch.setattr(routes_health, "_load_expected_heads", lambda: (None, "skipped_no_alembic_files"))

    response = client.get("/readyz")
    assert response.status_code == 200
    payload = response.json()
    assert _check(payload, "db")["ok"] is True
    assert _check(payload, "migrations")["detail"]["migrations_check"] == "skipped_no_alembic_files"
    assert _check(payload, "jobs")["detail"]["enabled"] is False


def test_readyz_flags_pending_migrations(monkeypatch, client):
    monkeypatch.setattr(routes_health, "_load_expected_heads", lambda: (["0002_design_snapshots"], None))

    response = client.get("/readyz")
    assert response.status_code == 503
    migrations = _check(response.json(), "migrations")
    assert migrations["ok"] is False
    assert migrations["detail"]["message"] == "migrations pending"


def test_readyz_requires_fresh_job_heartbeat(monkeypatch, client, async_session_maker):
    monkeypatch.setattr(routes_health, "_load_expected_heads", lambda: (None, "skipped_no_alembic_files"))
    settings.job_heartbeat_required = True
    settings.job_heartbeat_ttl_seconds = 60

    missing = client.get("/readyz")
    assert missing.status_code == 503
    assert _check(missing.json(), "jobs")["detail"]["message"] == "job heartbeat missing"

    asyncio.run(_set_job_heartbeat(async_session_maker, age_seconds=600))
    stale = client.get("/readyz")
    assert stale.status_code == 503

    asyncio.run(_set_job_heartbeat(async_session_maker, age_seconds=0))
    fresh = client.get("/readyz")
    assert fresh.status_code == 200


def test_metrics_endpoint_requires_token_when_configured(client):
    settings.metrics_token = "secret-token"
    app.state.metrics = configure_metrics(True)

    assert client.get("/metrics").status_code == 401
    assert client.get("/metrics", headers={"Authorization": "Bearer secret-token"}).status_code == 200
    assert client.get("/metrics?token=secret-token").status_code == 200


def test_metrics_endpoint_disabled_when_metrics_off(client):
    app.state.metrics = configure_metrics(False)
    assert client.get("/metrics").status_code == 404
    configure_metrics(True)


def test_slot_conflicts_are_counted(client, async_session_maker):
    settings.metrics_token = None
    app.state.metrics = configure_metrics(True)

    async def _seed():
        async with async_session_maker() as session:
            service = await insert_service(session)
            slot = await insert_slot(session)
            return service.service_id, slot.slot_id

    service_id, slot_id = asyncio.run(_seed())
    body = {"provider_id": PROVIDER_ID, "service_id": service_id, "slot_id": slot_id}
    assert client.post("/v1/orders", json=body, headers=auth_headers(CLIENT_ID)).status_code == 201
    assert client.post("/v1/orders", json=body, headers=auth_headers(OTHER_CLIENT_ID)).status_code == 409

    rendered = client.get("/metrics").text
    assert 'slot_claims_total{result="claimed"} 1.0' in rendered
    assert 'slot_claims_total{result="conflict"} 1.0' in rendered
    assert 'order_transitions_total{event="create",result="ok"} 1.0' in rendered
