from __future__ import annotations

import logging
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Protocol

from laborline.services.repository import LaborRequestRepository

logger = logging.getLogger(__name__)

FANOUT_FAILURE_MESSAGE = "failed to create notifications"


class NotificationTrigger(Protocol):
    """Hand-off point to the email collaborator once notifications exist."""

    async def notifications_created(self, labor_request_id: str, notification_ids: list[str]) -> None: ...


class LoggingNotificationTrigger:
    async def notifications_created(self, labor_request_id: str, notification_ids: list[str]) -> None:
        logger.info(
            "notifications ready for delivery request=%s count=%s",
            labor_request_id,
            len(notification_ids),
        )


@dataclass(slots=True)
class FanoutResult:
    craft_id: str
    created_ids: list[str] = field(default_factory=list)
    error: str | None = None

    @property
    def failed(self) -> bool:
        return self.error is not None


async def create_notifications(
    repository: LaborRequestRepository,
    *,
    craft_id: str,
    labor_request_id: str,
    agency_ids: list[str],
    trigger: NotificationTrigger | None = None,
) -> FanoutResult:
    """Inserts one pending notification per matched agency on the elevated path.

    Failures are logged and returned, never raised, so one craft cannot abort
    the fan-out of the others. Nothing is retried.
    """
    result = FanoutResult(craft_id=craft_id)
    unique_agency_ids = list(dict.fromkeys(agency_ids))
    if not unique_agency_ids:
        return result

    rows = [
        {"labor_request_id": labor_request_id, "craft_id": craft_id, "agency_id": agency_id}
        for agency_id in unique_agency_ids
    ]
    try:
        created = await repository.create_notifications(rows)
    except Exception:
        logger.exception(
            "notification fan-out failed table=labor_request_notifications op=insert request=%s craft=%s agencies=%s",
            labor_request_id,
            craft_id,
            len(rows),
        )
        result.error = FANOUT_FAILURE_MESSAGE
        return result

    result.created_ids = [str(row["id"]) for row in created]
    if trigger is not None and result.created_ids:
        try:
            await trigger.notifications_created(labor_request_id, result.created_ids)
        except Exception:
            logger.exception("notification trigger failed request=%s craft=%s", labor_request_id, craft_id)
    return result


@lru_cache
def get_notification_trigger() -> NotificationTrigger:
    return LoggingNotificationTrigger()
