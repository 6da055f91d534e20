from __future__ import annotations

import asyncio
import re
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from conftest import RecordingTrigger, craft_payload, request_payload
from laborline.main import app
from laborline.schemas.labor_requests import LaborRequestIn
from laborline.services.intake import RequestCreationError, generate_confirmation_token, submit_labor_request
from laborline.services.matching import get_agency_matcher
from laborline.services.store import InMemoryRepository

ELECTRICIAN = "11111111-1111-1111-1111-111111111111"
PIPEFITTER = "22222222-2222-2222-2222-222222222222"
HOUSTON = "33333333-3333-3333-3333-333333333333"


class FlakyMatcher:
    """Fails for one trade, returns fixed agencies for every other."""

    def __init__(self, failing_trade: str, agency_ids: list[str]) -> None:
        self.failing_trade = failing_trade
        self.agency_ids = agency_ids
        self.calls: list[tuple[str, str]] = []

    async def match_craft(self, trade_id: str, region_id: str) -> list[str]:
        self.calls.append((trade_id, region_id))
        if trade_id == self.failing_trade:
            raise RuntimeError("matcher timed out")
        return list(self.agency_ids)


def test_confirmation_token_is_64_hex_with_24h_expiry() -> None:
    now = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
    token, expires_at = generate_confirmation_token(now, 24)

    assert re.fullmatch(r"[0-9a-f]{64}", token)
    assert expires_at - now == timedelta(hours=24)
    assert generate_confirmation_token(now, 24)[0] != token


def test_submit_returns_token_and_match_counts(api_client: TestClient, store: InMemoryRepository) -> None:
    agency_a = store.add_agency(covers=[(ELECTRICIAN, HOUSTON)])
    agency_b = store.add_agency(covers=[(ELECTRICIAN, HOUSTON)])

    before = datetime.now(timezone.utc)
    response = api_client.post("/labor-requests", json=request_payload())
    assert response.status_code == 201

    body = response.json()
    assert body["success"] is True
    assert re.fullmatch(r"[0-9a-f]{64}", body["confirmationToken"])
    assert body["totalMatches"] == 2
    assert body["matchesByCraft"][0]["matches"] == 2
    assert body["message"] == "Successfully matched 2 agencies across 1 craft requirements"
    assert body["notificationWarning"] is None

    stored = store.labor_requests[body["requestId"]]
    assert stored["contact_email"] == "contractor@acmebuild.com"
    assert stored["status"] == "pending"
    expiry_delta = stored["confirmation_token_expires"] - before
    assert timedelta(hours=24) <= expiry_delta < timedelta(hours=24, seconds=5)

    notified = {row["agency_id"] for row in store.notifications.values()}
    assert notified == {agency_a, agency_b}
    assert all(row["status"] == "pending" for row in store.notifications.values())


def test_submit_without_matches_still_succeeds(api_client: TestClient, store: InMemoryRepository) -> None:
    response = api_client.post("/labor-requests", json=request_payload())
    assert response.status_code == 201
    body = response.json()
    assert body["totalMatches"] == 0
    assert body["message"] == "Labor request created, but no agencies matched the requirements"
    assert store.notifications == {}


def test_submit_accepts_snake_case_fields(api_client: TestClient) -> None:
    payload = {
        "project_name": "Harbor Expansion",
        "company_name": "Gulf Builders",
        "contact_email": "pm@gulfbuilders.com",
        "contact_phone": "713-555-0199",
        "crafts": [
            {
                "trade_id": ELECTRICIAN,
                "region_id": HOUSTON,
                "experience_level": "Foreman",
                "worker_count": 2,
                "start_date": craft_payload()["startDate"],
                "duration_days": 10,
                "hours_per_week": 50,
            }
        ],
    }
    response = api_client.post("/labor-requests", json=payload)
    assert response.status_code == 201


@pytest.mark.parametrize(
    "overrides",
    [
        {"projectName": "ab"},
        {"companyName": "A"},
        {"contactEmail": "not-an-email"},
        {"contactPhone": "555-12"},
        {"contactPhone": "phone-number-x"},
        {"additionalDetails": "x" * 2001},
        {"crafts": []},
        {"crafts": [craft_payload(workerCount=0)]},
        {"crafts": [craft_payload(workerCount=501)]},
        {"crafts": [craft_payload(hoursPerWeek=169)]},
        {"crafts": [craft_payload(experienceLevel="Wizard")]},
        {"crafts": [craft_payload(startDate="2000-01-01")]},
        {"crafts": [craft_payload(payRateMin=40)]},
        {"crafts": [craft_payload(payRateMin=60, payRateMax=40)]},
        {"crafts": [craft_payload(perDiemRate=1500)]},
        {"crafts": [craft_payload(), craft_payload()]},
        {"crafts": [craft_payload(tradeId=f"00000000-0000-0000-0000-{index:012d}") for index in range(11)]},
    ],
)
def test_submit_rejects_invalid_payload_before_any_write(
    api_client: TestClient,
    store: InMemoryRepository,
    overrides: dict,
) -> None:
    response = api_client.post("/labor-requests", json=request_payload(**overrides))
    assert response.status_code == 422
    assert store.labor_requests == {}
    assert store.crafts == {}


def test_unknown_trade_is_rejected_without_partial_rows(api_client: TestClient, store: InMemoryRepository) -> None:
    payload = request_payload(crafts=[craft_payload(tradeId="99999999-9999-9999-9999-999999999999")])
    response = api_client.post("/labor-requests", json=payload)
    assert response.status_code == 422
    assert store.labor_requests == {}


def test_craft_write_failure_leaves_no_parent_request(api_client: TestClient, store: InMemoryRepository) -> None:
    store.fail_craft_insert = True

    response = api_client.post("/labor-requests", json=request_payload())

    assert response.status_code == 500
    assert response.json()["detail"] == "failed to create labor request"
    assert store.labor_requests == {}
    assert store.crafts == {}


def test_matcher_failure_for_one_craft_does_not_fail_submission(
    api_client: TestClient,
    store: InMemoryRepository,
) -> None:
    agency_id = store.add_agency()
    matcher = FlakyMatcher(failing_trade=ELECTRICIAN, agency_ids=[agency_id])
    app.dependency_overrides[get_agency_matcher] = lambda: matcher

    payload = request_payload(
        crafts=[
            craft_payload(tradeId=ELECTRICIAN),
            craft_payload(tradeId=PIPEFITTER),
        ]
    )
    response = api_client.post("/labor-requests", json=payload)

    assert response.status_code == 201
    body = response.json()
    by_craft = {
        store.crafts[item["craftId"]]["trade_id"]: item["matches"]
        for item in body["matchesByCraft"]
    }
    assert by_craft == {ELECTRICIAN: 0, PIPEFITTER: 1}
    assert body["totalMatches"] == 1
    assert [call[0] for call in matcher.calls] == [ELECTRICIAN, PIPEFITTER]


def test_notification_failure_is_reported_as_warning(
    api_client: TestClient,
    store: InMemoryRepository,
    trigger: RecordingTrigger,
) -> None:
    store.add_agency(covers=[(ELECTRICIAN, HOUSTON)])
    store.fail_notification_insert = True

    response = api_client.post("/labor-requests", json=request_payload())

    assert response.status_code == 201
    body = response.json()
    assert body["totalMatches"] == 1
    assert body["notificationWarning"] == "Some agencies could not be notified. Please contact support."
    assert body["notificationErrors"] == [
        {"craftId": body["matchesByCraft"][0]["craftId"], "error": "failed to create notifications"}
    ]
    assert store.labor_requests
    assert trigger.calls == []


def test_trigger_receives_created_notification_ids(
    api_client: TestClient,
    store: InMemoryRepository,
    trigger: RecordingTrigger,
) -> None:
    store.add_agency(covers=[(ELECTRICIAN, HOUSTON)])

    response = api_client.post("/labor-requests", json=request_payload())

    assert response.status_code == 201
    assert len(trigger.calls) == 1
    request_id, notification_ids = trigger.calls[0]
    assert request_id == response.json()["requestId"]
    assert set(notification_ids) == set(store.notifications)


def test_service_raises_request_creation_error_on_craft_failure(store: InMemoryRepository) -> None:
    store.fail_craft_insert = True
    payload = LaborRequestIn.model_validate(request_payload())

    with pytest.raises(RequestCreationError):
        asyncio.run(
            submit_labor_request(
                payload,
                repository=store,
                matcher=FlakyMatcher(failing_trade="", agency_ids=[]),
                trigger=None,
                token_ttl_hours=24,
            )
        )

    assert store.labor_requests == {}


def test_service_deduplicates_repeated_agency_ids(store: InMemoryRepository) -> None:
    agency_id = store.add_agency()
    payload = LaborRequestIn.model_validate(request_payload())

    result = asyncio.run(
        submit_labor_request(
            payload,
            repository=store,
            matcher=FlakyMatcher(failing_trade="", agency_ids=[agency_id, agency_id]),
            trigger=None,
            token_ttl_hours=24,
        )
    )

    assert result.total_matches == 2
    assert len(store.notifications) == 1
