from __future__ import annotations

import os
from datetime import date, timedelta
from typing import Any

import pytest

# Tracing stays off under test; the app reads settings at import time.
os.environ.setdefault("LL_OTEL_ENABLED", "false")

from fastapi.testclient import TestClient  # noqa: E402

import laborline.core.security as security  # noqa: E402
from laborline.core.config import Settings, get_settings  # noqa: E402
from laborline.core.ratelimit import InMemoryFailedAttemptLimiter, get_rate_limiter  # noqa: E402
from laborline.main import app  # noqa: E402
from laborline.services.fanout import get_notification_trigger  # noqa: E402
from laborline.services.repository import get_repository  # noqa: E402
from laborline.services.store import InMemoryRepository  # noqa: E402

OWNER_ID = "aaaaaaaa-0000-0000-0000-000000000001"
OTHER_USER_ID = "aaaaaaaa-0000-0000-0000-000000000002"
DELIVERY_KEY = "delivery-secret"


class RecordingTrigger:
    def __init__(self) -> None:
        self.calls: list[tuple[str, list[str]]] = []

    async def notifications_created(self, labor_request_id: str, notification_ids: list[str]) -> None:
        self.calls.append((labor_request_id, notification_ids))


class FakeClock:
    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.value = start

    def __call__(self) -> float:
        return self.value

    def advance(self, seconds: float) -> None:
        self.value += seconds


@pytest.fixture
def store() -> InMemoryRepository:
    repository = InMemoryRepository()
    repository.add_trade("Electrician", trade_id="11111111-1111-1111-1111-111111111111")
    repository.add_trade("Pipefitter", trade_id="22222222-2222-2222-2222-222222222222")
    repository.add_region("Houston", "TX", region_id="33333333-3333-3333-3333-333333333333")
    return repository


@pytest.fixture
def settings() -> Settings:
    return Settings(
        environment="test",
        supabase_url="https://example.supabase.co",
        supabase_anon_key="anon-key",
        delivery_api_key=DELIVERY_KEY,
        monitoring_api_key="monitoring-secret",
        redis_url=None,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def limiter(clock: FakeClock) -> InMemoryFailedAttemptLimiter:
    return InMemoryFailedAttemptLimiter(limit=5, window_seconds=900, cleanup_probability=0.0, clock=clock)


@pytest.fixture
def trigger() -> RecordingTrigger:
    return RecordingTrigger()


@pytest.fixture
def api_client(
    store: InMemoryRepository,
    settings: Settings,
    limiter: InMemoryFailedAttemptLimiter,
    trigger: RecordingTrigger,
) -> TestClient:
    app.dependency_overrides[get_repository] = lambda: store
    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_rate_limiter] = lambda: limiter
    app.dependency_overrides[get_notification_trigger] = lambda: trigger

    with TestClient(app) as client:
        yield client

    app.dependency_overrides.clear()


def mock_supabase_user(monkeypatch: pytest.MonkeyPatch, user: dict[str, Any]) -> None:
    async def _fake_fetch(**_: Any) -> dict[str, Any]:
        return user

    monkeypatch.setattr(security, "_fetch_supabase_user", _fake_fetch)


def agency_owner(user_id: str = OWNER_ID, role: str = "agency_owner") -> dict[str, Any]:
    return {"id": user_id, "email": "owner@staffco.com", "app_metadata": {"role": role}}


def craft_payload(**overrides: Any) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "tradeId": "11111111-1111-1111-1111-111111111111",
        "regionId": "33333333-3333-3333-3333-333333333333",
        "experienceLevel": "Journeyman",
        "workerCount": 4,
        "startDate": (date.today() + timedelta(days=14)).isoformat(),
        "durationDays": 30,
        "hoursPerWeek": 40,
    }
    payload.update(overrides)
    return payload


def request_payload(**overrides: Any) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "projectName": "Riverside Medical Center",
        "companyName": "Acme Build",
        "contactEmail": "Contractor@AcmeBuild.com",
        "contactPhone": "(555) 123-4567",
        "crafts": [craft_payload()],
    }
    payload.update(overrides)
    return payload
