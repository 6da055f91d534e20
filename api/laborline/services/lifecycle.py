"""Notification status lifecycle.

Every status change goes through ``ALLOWED_TRANSITIONS``; repositories consult
it while holding the row lock so no caller can set an arbitrary status.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any

from laborline.core.auth import Principal

if TYPE_CHECKING:
    from laborline.services.repository import LaborRequestRepository


class NotificationStatus(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"
    NEW = "new"
    VIEWED = "viewed"
    RESPONDED = "responded"
    ARCHIVED = "archived"


ALLOWED_TRANSITIONS: dict[str, frozenset[str]] = {
    "pending": frozenset({"sent", "failed", "new", "viewed", "archived"}),
    "sent": frozenset({"new", "viewed", "archived"}),
    "failed": frozenset({"sent", "new", "viewed", "archived"}),
    "new": frozenset({"viewed", "archived"}),
    "viewed": frozenset({"responded", "archived"}),
    "responded": frozenset(),
    "archived": frozenset(),
}
TERMINAL_STATUSES = frozenset(status for status, targets in ALLOWED_TRANSITIONS.items() if not targets)
OBSERVABLE_STATUSES = frozenset(status for status, targets in ALLOWED_TRANSITIONS.items() if "new" in targets)


def is_transition_allowed(from_status: str, to_status: str) -> bool:
    if from_status == to_status:
        return True
    return to_status in ALLOWED_TRANSITIONS.get(from_status, frozenset())


async def mark_viewed(
    repository: LaborRequestRepository,
    notification_id: str,
    *,
    principal: Principal,
    now: datetime | None = None,
) -> dict[str, Any]:
    # Reopening an answered or archived request must not regress its status.
    return await repository.transition_notification(
        notification_id,
        to_status=NotificationStatus.VIEWED.value,
        principal=principal,
        now=now or datetime.now(timezone.utc),
        skip_from=TERMINAL_STATUSES,
    )


async def respond(
    repository: LaborRequestRepository,
    notification_id: str,
    *,
    principal: Principal,
    interested: bool,
    message: str | None,
    now: datetime | None = None,
) -> dict[str, Any]:
    return await repository.transition_notification(
        notification_id,
        to_status=NotificationStatus.RESPONDED.value,
        principal=principal,
        now=now or datetime.now(timezone.utc),
        response={"interested": interested, "message": message},
    )


async def archive(
    repository: LaborRequestRepository,
    notification_id: str,
    *,
    principal: Principal,
    now: datetime | None = None,
) -> dict[str, Any]:
    return await repository.transition_notification(
        notification_id,
        to_status=NotificationStatus.ARCHIVED.value,
        principal=principal,
        now=now or datetime.now(timezone.utc),
    )


async def record_delivery(
    repository: LaborRequestRepository,
    notification_id: str,
    *,
    delivered: bool,
    delivery_error: str | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Applies a delivery outcome reported by the email collaborator (elevated path)."""
    if delivered:
        to_status = NotificationStatus.SENT.value
        delivery_error = None
    else:
        to_status = NotificationStatus.FAILED.value
        delivery_error = delivery_error or "delivery failed"
    return await repository.transition_notification(
        notification_id,
        to_status=to_status,
        principal=None,
        now=now or datetime.now(timezone.utc),
        delivery_error=delivery_error,
    )


async def observe_inbox(
    repository: LaborRequestRepository,
    agency_id: str,
    *,
    principal: Principal,
) -> int:
    """Marks every undelivered or unseen notification of the agency as ``new``."""
    return await repository.observe_agency_notifications(
        agency_id,
        principal=principal,
        from_statuses=OBSERVABLE_STATUSES,
    )
