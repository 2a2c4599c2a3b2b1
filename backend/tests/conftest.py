import asyncio
import os
import sys
from datetime import date, datetime, time, timedelta, timezone
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

os.environ.setdefault("TESTING", "true")


def ensure_event_loop() -> asyncio.AbstractEventLoop:
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)

    if loop.is_closed():
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)

    return loop


ensure_event_loop()

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import select  # noqa: E402
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import NullPool, StaticPool  # noqa: E402

from marketplace.domain.catalog.db_models import Design, ProviderService, ServiceDesign  # noqa: E402
from marketplace.domain.ops import db_models as ops_db_models  # noqa: E402,F401
from marketplace.domain.orders import db_models as order_db_models  # noqa: E402,F401
from marketplace.domain.orders.statuses import TERMINAL_STATUSES, OrderStatus  # noqa: E402
from marketplace.domain.outbox import db_models as outbox_db_models  # noqa: E402,F401
from marketplace.domain.slots.db_models import TimeSlot  # noqa: E402
from marketplace.infra.auth import create_access_token  # noqa: E402
from marketplace.infra.db import Base, get_db_session  # noqa: E402
from marketplace.main import app  # noqa: E402
from marketplace.settings import settings  # noqa: E402

CLIENT_ID = "client-1"
OTHER_CLIENT_ID = "client-2"
PROVIDER_ID = "provider-1"
OTHER_PROVIDER_ID = "provider-2"

_RESTORED_SETTINGS = (
    "app_env",
    "testing",
    "metrics_enabled",
    "metrics_token",
    "job_heartbeat_required",
    "job_heartbeat_ttl_seconds",
    "order_response_window_seconds",
    "order_auto_complete_after_hours",
    "orders_page_size_max",
    "notification_webhook_url",
    "outbox_max_attempts",
    "outbox_base_backoff_seconds",
)


def auth_headers(actor_id: str = CLIENT_ID, role: str = "client") -> dict[str, str]:
    token = create_access_token(actor_id, role, 30, settings.auth_secret_key)
    return {"Authorization": f"Bearer {token}"}


def future_day(days: int = 3) -> date:
    return datetime.now(tz=timezone.utc).date() + timedelta(days=days)


def slot_start(slot: TimeSlot) -> datetime:
    return datetime.combine(slot.work_date, slot.start_time, tzinfo=timezone.utc)


async def insert_design(session, design_id: str, *, title: str = "French tips", **fields) -> Design:
    design = await session.get(Design, design_id)
    if design is None:
        fields.setdefault("image_url", f"https://cdn.example.com/designs/{design_id}.jpg")
        fields.setdefault("source", "master")
        design = Design(design_id=design_id, title=title, **fields)
        session.add(design)
        await session.commit()
    return design


async def insert_service(
    session,
    *,
    provider_id: str = PROVIDER_ID,
    price_cents: int = 5000,
    duration_minutes: int = 60,
    design_id: str | None = None,
    design_price_cents: int | None = None,
    design_minutes: int | None = None,
) -> ProviderService:
    service = ProviderService(
        provider_id=provider_id,
        name="Classic manicure",
        price_cents=price_cents,
        duration_minutes=duration_minutes,
        is_active=True,
    )
    session.add(service)
    await session.flush()
    if design_id is not None:
        await insert_design(session, design_id)
        session.add(
            ServiceDesign(
                service_id=service.service_id,
                design_id=design_id,
                custom_price_cents=design_price_cents,
                additional_minutes=design_minutes,
                is_active=True,
            )
        )
    await session.commit()
    await session.refresh(service)
    return service


async def insert_slot(
    session,
    *,
    provider_id: str = PROVIDER_ID,
    work_date: date | None = None,
    start: time = time(10, 0),
    end: time = time(11, 0),
    status: str = "available",
) -> TimeSlot:
    slot = TimeSlot(
        provider_id=provider_id,
        work_date=work_date or future_day(),
        start_time=start,
        end_time=end,
        status=status,
    )
    session.add(slot)
    await session.commit()
    await session.refresh(slot)
    return slot


SLOT_STATUS_FOR_ORDER = {
    OrderStatus.PENDING.value: "held",
    OrderStatus.ALTERNATIVE_PROPOSED.value: "held",
    OrderStatus.CONFIRMED.value: "booked",
}


async def assert_slots_conserved(session) -> None:
    """Each live order owns exactly the slot it points at; finished orders own none."""
    Order = order_db_models.Order
    orders = (await session.execute(select(Order.order_id, Order.status, Order.slot_id))).all()
    owned: dict[str, list[tuple[str, str]]] = {}
    claimed = await session.execute(
        select(TimeSlot.order_id, TimeSlot.slot_id, TimeSlot.status).where(TimeSlot.order_id.is_not(None))
    )
    for order_id, slot_id, status in claimed.all():
        owned.setdefault(order_id, []).append((slot_id, status))

    terminal = {status.value for status in TERMINAL_STATUSES}
    for order_id, status, slot_id in orders:
        if status in terminal:
            assert slot_id is None, f"{status} order {order_id} still points at {slot_id}"
            assert order_id not in owned, f"{status} order {order_id} still owns {owned[order_id]}"
        else:
            assert owned.get(order_id) == [(slot_id, SLOT_STATUS_FOR_ORDER[status])], (
                f"{status} order {order_id} owns {owned.get(order_id)}"
            )
    assert set(owned) <= {row.order_id for row in orders}, "slot owned by an unknown order"


@pytest.fixture(scope="session")
def test_engine():
    db_path = Path("test.db")
    if db_path.exists():
        db_path.unlink()
    engine = create_async_engine(
        "sqlite+aiosqlite:///./test.db",
        connect_args={"check_same_thread": False, "timeout": 30},
        poolclass=StaticPool,
    )

    async def init_models() -> None:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    asyncio.run(init_models())
    yield engine
    asyncio.run(engine.dispose())


@pytest.fixture(scope="session")
def async_session_maker(test_engine):
    return async_sessionmaker(test_engine, expire_on_commit=False)


@pytest.fixture()
def file_session_maker(tmp_path):
    """Separate connections over a file database, for tests that race writers."""

    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'race.db'}",
        poolclass=NullPool,
        connect_args={"timeout": 30},
    )

    async def init_models() -> None:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    asyncio.run(init_models())
    yield async_sessionmaker(engine, expire_on_commit=False)
    asyncio.run(engine.dispose())


@pytest.fixture(autouse=True)
def restore_settings():
    original = {name: getattr(settings, name) for name in _RESTORED_SETTINGS}
    yield
    for name, value in original.items():
        setattr(settings, name, value)


@pytest.fixture(autouse=True)
def enable_test_mode():
    settings.testing = True
    settings.app_env = "dev"
    settings.notification_webhook_url = None
    yield


@pytest.fixture(autouse=True)
def restore_app_state():
    original_metrics = getattr(app.state, "metrics", None)
    original_app_settings = getattr(app.state, "app_settings", None)
    yield
    if original_metrics is not None:
        app.state.metrics = original_metrics
    if original_app_settings is not None:
        app.state.app_settings = original_app_settings


@pytest.fixture(autouse=True)
def clean_database(test_engine):
    async def truncate_tables() -> None:
        async with test_engine.begin() as conn:
            for table in reversed(Base.metadata.sorted_tables):
                await conn.execute(table.delete())

    asyncio.run(truncate_tables())
    yield


@pytest.fixture()
def client(async_session_maker):
    ensure_event_loop()

    async def override_db_session():
        async with async_session_maker() as session:
            yield session

    app.dependency_overrides[get_db_session] = override_db_session
    original_factory = getattr(app.state, "db_session_factory", None)
    app.state.db_session_factory = async_session_maker
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
    app.state.db_session_factory = original_factory
