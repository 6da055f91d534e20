from __future__ import annotations

import threading
from collections.abc import Iterable
from datetime import datetime, timezone
from typing import Any
from uuid import UUID, uuid4

from laborline.core.auth import Principal
from laborline.services.lifecycle import is_transition_allowed
from laborline.services.repository import (
    RepositoryConflictError,
    RepositoryNotFoundError,
    RepositoryValidationError,
    RepositoryWriteError,
)
from laborline.services.search import InboxFilter


class InMemoryRepository:
    """Process-local repository used by tests and local development.

    Mirrors the row level security of the Postgres schema: a principal only
    sees notifications of agencies it owns unless it carries the admin role,
    and calls without a principal take the elevated path.
    """

    def __init__(self) -> None:
        self.labor_requests: dict[str, dict[str, Any]] = {}
        self.crafts: dict[str, dict[str, Any]] = {}
        self.notifications: dict[str, dict[str, Any]] = {}
        self.responses: list[dict[str, Any]] = []
        self.trades: dict[str, str] = {}
        self.regions: dict[str, tuple[str, str]] = {}
        self.agency_coverage: dict[tuple[str, str], list[str]] = {}
        self.agency_owners: dict[str, str] = {}
        self.fail_craft_insert = False
        self.fail_notification_insert = False
        self.lookups = 0
        self.closed = False
        self._lock = threading.Lock()

    def add_trade(self, name: str, trade_id: str | None = None) -> str:
        trade_id = trade_id or str(uuid4())
        self.trades[trade_id] = name
        return trade_id

    def add_region(self, name: str, state_code: str, region_id: str | None = None) -> str:
        region_id = region_id or str(uuid4())
        self.regions[region_id] = (name, state_code)
        return region_id

    def add_agency(self, *, owner: str | None = None, covers: Iterable[tuple[str, str]] = ()) -> str:
        agency_id = str(uuid4())
        if owner:
            self.agency_owners[agency_id] = owner
        for trade_id, region_id in covers:
            self.agency_coverage.setdefault((str(trade_id), str(region_id)), []).append(agency_id)
        return agency_id

    async def close(self) -> None:
        self.closed = True

    async def create_labor_request(
        self,
        *,
        project_name: str,
        company_name: str,
        contact_email: str,
        contact_phone: str,
        additional_details: str | None,
        confirmation_token: str,
        confirmation_token_expires: datetime,
        crafts: list[dict[str, Any]],
    ) -> tuple[dict[str, Any], list[dict[str, Any]]]:
        now = datetime.now(timezone.utc)
        request_id = str(uuid4())
        request = {
            "id": request_id,
            "project_name": project_name,
            "company_name": company_name,
            "contact_email": contact_email,
            "contact_phone": contact_phone,
            "additional_details": additional_details,
            "status": "pending",
            "confirmation_token": confirmation_token,
            "confirmation_token_expires": confirmation_token_expires,
            "created_at": now,
        }

        staged: list[dict[str, Any]] = []
        for craft in crafts:
            trade_id = str(craft["trade_id"])
            region_id = str(craft["region_id"])
            if self.trades and trade_id not in self.trades:
                raise RepositoryValidationError("unknown trade or region")
            if self.regions and region_id not in self.regions:
                raise RepositoryValidationError("unknown trade or region")
            staged.append(
                {
                    "id": str(uuid4()),
                    "labor_request_id": request_id,
                    "trade_id": trade_id,
                    "region_id": region_id,
                    "experience_level": craft["experience_level"],
                    "worker_count": craft["worker_count"],
                    "start_date": craft["start_date"],
                    "duration_days": craft["duration_days"],
                    "hours_per_week": craft["hours_per_week"],
                    "pay_rate_min": craft.get("pay_rate_min"),
                    "pay_rate_max": craft.get("pay_rate_max"),
                    "per_diem_rate": craft.get("per_diem_rate"),
                    "notes": craft.get("notes"),
                    "created_at": now,
                }
            )
        if self.fail_craft_insert:
            raise RepositoryWriteError("failed to create craft requirements")

        with self._lock:
            self.labor_requests[request_id] = request
            for row in staged:
                self.crafts[row["id"]] = row
        return dict(request), [dict(row) for row in staged]

    async def get_labor_request_by_token(self, token: str) -> dict[str, Any] | None:
        self.lookups += 1
        for request in self.labor_requests.values():
            if request["confirmation_token"] == token:
                return dict(request)
        return None

    async def get_request_match_breakdown(self, labor_request_id: str) -> list[dict[str, Any]]:
        self.lookups += 1
        crafts = sorted(
            (craft for craft in self.crafts.values() if craft["labor_request_id"] == labor_request_id),
            key=lambda craft: (craft["created_at"], craft["id"]),
        )
        return [
            {
                "craft_id": craft["id"],
                "trade_name": self.trades.get(craft["trade_id"]),
                "matches": sum(1 for n in self.notifications.values() if n["craft_id"] == craft["id"]),
            }
            for craft in crafts
        ]

    async def match_agencies_to_craft(self, *, trade_id: str, region_id: str) -> list[dict[str, Any]]:
        agencies = self.agency_coverage.get((str(trade_id), str(region_id)), [])
        return [{"agency_id": agency_id, "metadata": {}} for agency_id in agencies]

    async def create_notifications(self, rows: list[dict[str, Any]]) -> list[dict[str, Any]]:
        if self.fail_notification_insert:
            raise RepositoryWriteError("failed to create notifications")
        now = datetime.now(timezone.utc)
        created: list[dict[str, Any]] = []
        with self._lock:
            for row in rows:
                notification = {
                    "id": str(uuid4()),
                    "labor_request_id": row["labor_request_id"],
                    "craft_id": row["craft_id"],
                    "agency_id": row["agency_id"],
                    "status": "pending",
                    "sent_at": None,
                    "viewed_at": None,
                    "responded_at": None,
                    "delivery_error": None,
                    "created_at": now,
                }
                self.notifications[notification["id"]] = notification
                created.append(dict(notification))
        return created

    async def transition_notification(
        self,
        notification_id: str,
        *,
        to_status: str,
        principal: Principal | None,
        now: datetime,
        skip_from: Iterable[str] = (),
        delivery_error: str | None = None,
        response: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        with self._lock:
            notification = self.notifications.get(notification_id)
            if notification is None or not self._can_see(principal, notification["agency_id"]):
                raise RepositoryNotFoundError("notification not found")

            from_status = notification["status"]
            if from_status in set(skip_from) or from_status == to_status:
                return dict(notification)
            if not is_transition_allowed(from_status, to_status):
                raise RepositoryConflictError(f"invalid notification status transition: {from_status} -> {to_status}")

            notification["status"] = to_status
            if to_status == "sent":
                notification["sent_at"] = now
                notification["delivery_error"] = None
            elif to_status == "failed":
                notification["delivery_error"] = delivery_error
            elif to_status == "viewed" and notification["viewed_at"] is None:
                notification["viewed_at"] = now
            elif to_status == "responded":
                notification["responded_at"] = now

            if response is not None:
                self.responses.append(
                    {
                        "notification_id": notification_id,
                        "interested": bool(response.get("interested")),
                        "message": response.get("message"),
                        "created_at": now,
                    }
                )
            return dict(notification)

    async def observe_agency_notifications(
        self,
        agency_id: str,
        *,
        principal: Principal,
        from_statuses: Iterable[str],
    ) -> int:
        statuses = set(from_statuses)
        changed = 0
        with self._lock:
            if not self._can_see(principal, agency_id):
                return 0
            for notification in self.notifications.values():
                if notification["agency_id"] == agency_id and notification["status"] in statuses:
                    notification["status"] = "new"
                    changed += 1
        return changed

    async def list_agency_inbox(
        self,
        agency_id: str,
        *,
        principal: Principal,
        inbox_filter: InboxFilter,
    ) -> list[dict[str, Any]]:
        if not self._can_see(principal, agency_id):
            return []

        items: list[dict[str, Any]] = []
        for notification in self.notifications.values():
            if notification["agency_id"] != agency_id:
                continue
            request = self.labor_requests.get(notification["labor_request_id"])
            craft = self.crafts.get(notification["craft_id"])
            if request is None or craft is None:
                continue
            if not inbox_filter.matches(
                status=notification["status"],
                project_name=request["project_name"],
                company_name=request["company_name"],
            ):
                continue
            region_name, state_code = self.regions.get(craft["region_id"], (None, None))
            items.append(
                {
                    "id": notification["id"],
                    "status": notification["status"],
                    "sent_at": notification["sent_at"],
                    "viewed_at": notification["viewed_at"],
                    "responded_at": notification["responded_at"],
                    "created_at": notification["created_at"],
                    "labor_request": {
                        "id": request["id"],
                        "project_name": request["project_name"],
                        "company_name": request["company_name"],
                        "contact_email": request["contact_email"],
                        "contact_phone": request["contact_phone"],
                        "additional_details": request["additional_details"],
                    },
                    "craft": {
                        "id": craft["id"],
                        "trade_name": self.trades.get(craft["trade_id"]),
                        "region_name": region_name,
                        "state_code": state_code,
                        "experience_level": craft["experience_level"],
                        "worker_count": craft["worker_count"],
                        "start_date": craft["start_date"],
                        "duration_days": craft["duration_days"],
                        "hours_per_week": craft["hours_per_week"],
                        "pay_rate_min": craft["pay_rate_min"],
                        "pay_rate_max": craft["pay_rate_max"],
                        "per_diem_rate": craft["per_diem_rate"],
                        "notes": craft["notes"],
                    },
                }
            )
        items.sort(key=lambda item: item["id"])
        items.sort(key=lambda item: item["created_at"], reverse=True)
        return items

    def _can_see(self, principal: Principal | None, agency_id: str) -> bool:
        if principal is None or principal.role == "admin":
            return True
        try:
            UUID(agency_id)
        except ValueError:
            return False
        return self.agency_owners.get(agency_id) == principal.subject
