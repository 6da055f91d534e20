from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

from laborline.schemas.labor_requests import LaborRequestIn
from laborline.services.fanout import NotificationTrigger, create_notifications
from laborline.services.matching import AgencyMatcher, MatchTally, match_craft_safely
from laborline.services.repository import (
    LaborRequestRepository,
    RepositoryError,
    RepositoryUnavailableError,
    RepositoryValidationError,
)

logger = logging.getLogger(__name__)

CONFIRMATION_TOKEN_BYTES = 32


class RequestCreationError(Exception):
    """Raised when the request and its crafts could not be stored together."""


@dataclass(slots=True)
class SubmissionResult:
    request_id: str
    confirmation_token: str
    confirmation_token_expires: datetime
    craft_ids: list[str]
    total_matches: int
    matches_by_craft: list[tuple[str, int]]
    notification_errors: list[tuple[str, str]] = field(default_factory=list)


def generate_confirmation_token(now: datetime, ttl_hours: int) -> tuple[str, datetime]:
    return secrets.token_hex(CONFIRMATION_TOKEN_BYTES), now + timedelta(hours=ttl_hours)


async def submit_labor_request(
    payload: LaborRequestIn,
    *,
    repository: LaborRequestRepository,
    matcher: AgencyMatcher,
    trigger: NotificationTrigger | None,
    token_ttl_hours: int,
    now: datetime | None = None,
) -> SubmissionResult:
    now = now or datetime.now(timezone.utc)
    token, expires_at = generate_confirmation_token(now, token_ttl_hours)
    crafts: list[dict[str, Any]] = [craft.model_dump() for craft in payload.crafts]

    try:
        request_row, craft_rows = await repository.create_labor_request(
            project_name=payload.project_name,
            company_name=payload.company_name,
            contact_email=payload.contact_email,
            contact_phone=payload.contact_phone,
            additional_details=payload.additional_details,
            confirmation_token=token,
            confirmation_token_expires=expires_at,
            crafts=crafts,
        )
    except (RepositoryValidationError, RepositoryUnavailableError):
        raise
    except RepositoryError as exc:
        logger.error("labor request creation failed project=%s: %s", payload.project_name, exc)
        raise RequestCreationError("failed to create labor request") from exc

    request_id = str(request_row["id"])
    tally = MatchTally()
    notification_errors: list[tuple[str, str]] = []

    # Crafts are processed one at a time: match, then fan out.
    for craft in craft_rows:
        craft_id = str(craft["id"])
        agency_ids = await match_craft_safely(
            matcher,
            craft_id=craft_id,
            trade_id=str(craft["trade_id"]),
            region_id=str(craft["region_id"]),
        )
        tally.add(craft_id, len(agency_ids))
        if not agency_ids:
            continue

        fanout = await create_notifications(
            repository,
            craft_id=craft_id,
            labor_request_id=request_id,
            agency_ids=agency_ids,
            trigger=trigger,
        )
        if fanout.failed:
            notification_errors.append((craft_id, fanout.error or "failed to create notifications"))

    logger.info(
        "labor request submitted request=%s crafts=%s matches=%s notification_failures=%s",
        request_id,
        len(craft_rows),
        tally.total,
        len(notification_errors),
    )
    return SubmissionResult(
        request_id=request_id,
        confirmation_token=token,
        confirmation_token_expires=expires_at,
        craft_ids=[str(craft["id"]) for craft in craft_rows],
        total_matches=tally.total,
        matches_by_craft=tally.by_craft,
        notification_errors=notification_errors,
    )
