import asyncio
from datetime import datetime, time, timedelta, timezone

from sqlalchemy import update

from marketplace.domain.orders.db_models import Order
from marketplace.domain.slots.db_models import TimeSlot
from tests.conftest import (
    CLIENT_ID,
    OTHER_CLIENT_ID,
    PROVIDER_ID,
    auth_headers,
    insert_design,
    insert_service,
    insert_slot,
)

CLIENT_HEADERS = auth_headers(CLIENT_ID, "client")
OTHER_CLIENT_HEADERS = auth_headers(OTHER_CLIENT_ID, "client")
PROVIDER_HEADERS = auth_headers(PROVIDER_ID, "provider")


def _seed(async_session_maker, slots: int = 1) -> tuple[str, list[str]]:
    async def _run():
        async with async_session_maker() as session:
            service = await insert_service(session)
            created = []
            for index in range(slots):
                slot = await insert_slot(session, start=time(9 + index), end=time(10 + index))
                created.append(slot.slot_id)
            return service.service_id, created

    return asyncio.run(_run())


def _create(client, service_id: str, slot_id: str, headers=CLIENT_HEADERS):
    return client.post(
        "/v1/orders",
        json={"provider_id": PROVIDER_ID, "service_id": service_id, "slot_id": slot_id},
        headers=headers,
    )


def test_create_order_and_conflict_problem_details(client, async_session_maker):
    service_id, (slot_id,) = _seed(async_session_maker)

    created = _create(client, service_id, slot_id)
    assert created.status_code == 201
    body = created.json()
    assert body["status"] == "pending"
    assert body["price_cents"] == 5000
    assert body["version"] == 1
    assert "X-Request-ID" in created.headers

    conflict = _create(client, service_id, slot_id, headers=OTHER_CLIENT_HEADERS)
    assert conflict.status_code == 409
    assert conflict.headers["content-type"].startswith("application/problem+json")
    problem = conflict.json()
    assert problem["code"] == "slot_conflict"
    assert problem["status"] == 409
    assert problem["request_id"]


def test_authentication_and_role_errors(client, async_session_maker):
    service_id, (slot_id,) = _seed(async_session_maker)

    missing = client.get("/v1/orders")
    assert missing.status_code == 401
    assert missing.json()["code"] == "authentication_required"

    bad_token = client.get("/v1/orders", headers={"Authorization": "Bearer not-a-token"})
    assert bad_token.status_code == 401

    as_provider = _create(client, service_id, slot_id, headers=PROVIDER_HEADERS)
    assert as_provider.status_code == 403
    assert as_provider.json()["code"] == "unauthorized"


def test_invalid_payload_is_validation_problem(client):
    response = client.post("/v1/orders", json={"provider_id": PROVIDER_ID}, headers=CLIENT_HEADERS)
    assert response.status_code == 422
    problem = response.json()
    assert problem["code"] == "validation_failed"
    fields = {error["field"] for error in problem["errors"]}
    assert {"service_id", "slot_id"} <= fields


def test_full_flow_over_http(client, async_session_maker):
    service_id, (slot_id, alternative_id) = _seed(async_session_maker, slots=2)
    order_id = _create(client, service_id, slot_id).json()["order_id"]

    proposed = client.put(
        f"/v1/orders/{order_id}/propose-time",
        json={"new_slot_id": alternative_id, "provider_notes": "later works better"},
        headers=PROVIDER_HEADERS,
    )
    assert proposed.status_code == 200
    assert proposed.json()["status"] == "alternative_proposed"

    accepted = client.put(f"/v1/orders/{order_id}/accept-proposed-time", headers=CLIENT_HEADERS)
    assert accepted.status_code == 200
    assert accepted.json()["status"] == "confirmed"
    assert accepted.json()["slot_id"] == alternative_id

    bad_rating = client.put(
        f"/v1/orders/{order_id}/complete", json={"rating": 7}, headers=PROVIDER_HEADERS
    )
    assert bad_rating.status_code == 422

    completed = client.put(
        f"/v1/orders/{order_id}/complete", json={"rating": 4}, headers=PROVIDER_HEADERS
    )
    assert completed.status_code == 200
    assert completed.json()["status"] == "completed"
    assert completed.json()["rating"] == 4

    terminal = client.put(f"/v1/orders/{order_id}/cancel", headers=CLIENT_HEADERS)
    assert terminal.status_code == 409
    assert terminal.json()["code"] == "invalid_transition"


def test_confirm_and_decline_without_body(client, async_session_maker):
    service_id, (first_slot, second_slot) = _seed(async_session_maker, slots=2)
    first = _create(client, service_id, first_slot).json()["order_id"]
    second = _create(client, service_id, second_slot).json()["order_id"]

    confirmed = client.put(f"/v1/orders/{first}/confirm", headers=PROVIDER_HEADERS)
    assert confirmed.status_code == 200
    assert confirmed.json()["confirmed_date_time"] is not None

    declined = client.put(
        f"/v1/orders/{second}/decline", json={"reason": "on holiday"}, headers=PROVIDER_HEADERS
    )
    assert declined.status_code == 200
    assert declined.json()["decline_reason"] == "on holiday"
    assert declined.json()["slot_id"] is None

    foreign = client.get(f"/v1/orders/{first}", headers=OTHER_CLIENT_HEADERS)
    assert foreign.status_code == 403
    missing = client.get("/v1/orders/does-not-exist", headers=CLIENT_HEADERS)
    assert missing.status_code == 404


def _slot_state(async_session_maker, slot_id: str) -> tuple[str, str | None]:
    async def _run():
        async with async_session_maker() as session:
            slot = await session.get(TimeSlot, slot_id)
            return slot.status, slot.order_id

    return asyncio.run(_run())


def _propose(client, service_id: str, slot_id: str, alternative_id: str) -> str:
    order_id = _create(client, service_id, slot_id).json()["order_id"]
    proposed = client.put(
        f"/v1/orders/{order_id}/propose-time",
        json={"new_slot_id": alternative_id},
        headers=PROVIDER_HEADERS,
    )
    assert proposed.status_code == 200
    return order_id


def test_client_decline_turns_down_proposed_time(client, async_session_maker):
    service_id, (slot_id, alternative_id) = _seed(async_session_maker, slots=2)
    order_id = _propose(client, service_id, slot_id, alternative_id)

    as_provider = client.put(f"/v1/orders/{order_id}/decline", headers=PROVIDER_HEADERS)
    assert as_provider.status_code == 409
    assert as_provider.json()["code"] == "invalid_transition"

    declined = client.put(
        f"/v1/orders/{order_id}/decline", json={"reason": "too late for me"}, headers=CLIENT_HEADERS
    )
    assert declined.status_code == 200
    body = declined.json()
    assert body["status"] == "cancelled"
    assert body["slot_id"] is None
    assert body["decline_reason"] == "too late for me"
    assert _slot_state(async_session_maker, alternative_id) == ("available", None)
    assert _slot_state(async_session_maker, slot_id) == ("available", None)


def test_client_cancel_walks_away_from_proposed_time(client, async_session_maker):
    service_id, (slot_id, alternative_id) = _seed(async_session_maker, slots=2)
    order_id = _propose(client, service_id, slot_id, alternative_id)

    cancelled = client.put(f"/v1/orders/{order_id}/cancel", headers=CLIENT_HEADERS)
    assert cancelled.status_code == 200
    assert cancelled.json()["status"] == "cancelled"
    assert _slot_state(async_session_maker, alternative_id) == ("available", None)

    again = client.put(f"/v1/orders/{order_id}/cancel", headers=CLIENT_HEADERS)
    assert again.status_code == 409


def test_client_cannot_decline_or_cancel_pending_order(client, async_session_maker):
    service_id, (slot_id,) = _seed(async_session_maker)
    order_id = _create(client, service_id, slot_id).json()["order_id"]

    declined = client.put(f"/v1/orders/{order_id}/decline", headers=CLIENT_HEADERS)
    assert declined.status_code == 409
    cancelled = client.put(f"/v1/orders/{order_id}/cancel", headers=CLIENT_HEADERS)
    assert cancelled.status_code == 409
    assert client.get(f"/v1/orders/{order_id}", headers=CLIENT_HEADERS).json()["status"] == "pending"
    assert _slot_state(async_session_maker, slot_id) == ("held", order_id)


def test_order_response_carries_design_snapshot(client, async_session_maker):
    async def _seed_design():
        async with async_session_maker() as session:
            await insert_design(session, "design-ombre", title="Ombre", color="pink")
            service = await insert_service(session)
            slot = await insert_slot(session)
            spare = await insert_slot(session, start=time(15), end=time(16))
            return service.service_id, slot.slot_id, spare.slot_id

    service_id, slot_id, spare_id = asyncio.run(_seed_design())
    created = client.post(
        "/v1/orders",
        json={
            "provider_id": PROVIDER_ID,
            "service_id": service_id,
            "slot_id": slot_id,
            "design_id": "design-ombre",
        },
        headers=CLIENT_HEADERS,
    )
    assert created.status_code == 201
    snapshot = created.json()["design_snapshot"]
    assert snapshot["design_id"] == "design-ombre"
    assert snapshot["title"] == "Ombre"
    assert snapshot["color"] == "pink"
    assert snapshot["source"] == "master"

    unknown = client.post(
        "/v1/orders",
        json={
            "provider_id": PROVIDER_ID,
            "service_id": service_id,
            "slot_id": spare_id,
            "design_id": "design-missing",
        },
        headers=OTHER_CLIENT_HEADERS,
    )
    assert unknown.status_code == 404


def test_get_order_reports_timeout_after_deadline(client, async_session_maker):
    service_id, (slot_id,) = _seed(async_session_maker)
    order_id = _create(client, service_id, slot_id).json()["order_id"]

    async def _expire_deadline():
        async with async_session_maker() as session:
            await session.execute(
                update(Order)
                .where(Order.order_id == order_id)
                .values(respond_by_deadline=datetime.now(tz=timezone.utc) - timedelta(minutes=1))
            )
            await session.commit()

    asyncio.run(_expire_deadline())

    response = client.get(f"/v1/orders/{order_id}", headers=CLIENT_HEADERS)
    assert response.status_code == 200
    assert response.json()["status"] == "timeout"
    assert response.json()["slot_id"] is None

    too_late = client.put(f"/v1/orders/{order_id}/confirm", headers=PROVIDER_HEADERS)
    assert too_late.status_code == 409


def test_list_orders_pagination_and_filters(client, async_session_maker):
    service_id, slot_ids = _seed(async_session_maker, slots=3)
    for slot_id in slot_ids:
        assert _create(client, service_id, slot_id).status_code == 201

    page = client.get("/v1/orders", params={"page": 1, "limit": 2}, headers=CLIENT_HEADERS)
    assert page.status_code == 200
    body = page.json()
    assert len(body["items"]) == 2
    assert body["pagination"] == {"page": 1, "limit": 2, "total": 3, "total_pages": 2}

    provider_view = client.get("/v1/orders", params={"status": "pending"}, headers=PROVIDER_HEADERS)
    assert provider_view.json()["pagination"]["total"] == 3

    other = client.get("/v1/orders", headers=OTHER_CLIENT_HEADERS)
    assert other.json()["items"] == []

    bad_status = client.get("/v1/orders", params={"status": "bogus"}, headers=CLIENT_HEADERS)
    assert bad_status.status_code == 422
    bad_page = client.get("/v1/orders", params={"page": 0}, headers=CLIENT_HEADERS)
    assert bad_page.status_code == 422
