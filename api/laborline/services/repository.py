from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator, Iterable
from contextlib import asynccontextmanager
from datetime import date, datetime
from decimal import Decimal
from functools import lru_cache
from typing import Any, Protocol

import asyncpg  # type: ignore[import-untyped]
from asyncpg import exceptions as pg_exc

from laborline.core.auth import Principal
from laborline.core.config import get_settings
from laborline.services.lifecycle import is_transition_allowed
from laborline.services.search import InboxFilter

logger = logging.getLogger(__name__)


class RepositoryError(Exception):
    """Base repository error."""


class RepositoryUnavailableError(RepositoryError):
    """Raised when the database is unavailable or not configured."""


class RepositoryNotFoundError(RepositoryError):
    """Raised when the requested entity does not exist."""


class RepositoryConflictError(RepositoryError):
    """Raised when an operation violates state transition rules."""


class RepositoryValidationError(RepositoryError):
    """Raised when payload validation fails before persistence."""


class RepositoryWriteError(RepositoryError):
    """Raised when a write fails; the message is safe to show to callers."""


class LaborRequestRepository(Protocol):
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
    ) -> tuple[dict[str, Any], list[dict[str, Any]]]: ...

    async def get_labor_request_by_token(self, token: str) -> dict[str, Any] | None: ...

    async def get_request_match_breakdown(self, labor_request_id: str) -> list[dict[str, Any]]: ...

    async def match_agencies_to_craft(self, *, trade_id: str, region_id: str) -> list[dict[str, Any]]: ...

    async def create_notifications(self, rows: list[dict[str, Any]]) -> list[dict[str, Any]]: ...

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
    ) -> dict[str, Any]: ...

    async def observe_agency_notifications(
        self,
        agency_id: str,
        *,
        principal: Principal,
        from_statuses: Iterable[str],
    ) -> int: ...

    async def list_agency_inbox(
        self,
        agency_id: str,
        *,
        principal: Principal,
        inbox_filter: InboxFilter,
    ) -> list[dict[str, Any]]: ...

    async def close(self) -> None: ...


NOTIFICATION_COLUMNS_SQL = """
  id::text as id,
  labor_request_id::text as labor_request_id,
  labor_request_craft_id::text as craft_id,
  agency_id::text as agency_id,
  status,
  sent_at,
  viewed_at,
  responded_at,
  delivery_error,
  created_at
"""

CRAFT_COLUMNS_SQL = """
  id::text as id,
  labor_request_id::text as labor_request_id,
  trade_id::text as trade_id,
  region_id::text as region_id,
  experience_level,
  worker_count,
  start_date,
  duration_days,
  hours_per_week,
  pay_rate_min,
  pay_rate_max,
  per_diem_rate,
  notes,
  created_at
"""


class PostgresRepository:
    """Labor request storage.

    Operations taking a ``principal`` run as the ``authenticated`` role with the
    principal's JWT claims set, so row level security decides what is visible.
    Operations without one run as the pool's own role, which bypasses row
    level security; they are reserved for writes and reads that no end user
    could perform (system fan-out, token lookups, delivery reports).
    """

    def __init__(
        self,
        database_url: str | None,
        min_pool_size: int,
        max_pool_size: int,
    ) -> None:
        self.database_url = database_url
        self.min_pool_size = min_pool_size
        self.max_pool_size = max_pool_size
        self._pool: asyncpg.Pool | None = None

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

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
        pool = await self._get_pool()

        try:
            async with pool.acquire() as conn:
                async with conn.transaction():
                    request_row = await conn.fetchrow(
                        """
                        insert into labor_requests (
                          project_name,
                          company_name,
                          contact_email,
                          contact_phone,
                          additional_details,
                          status,
                          confirmation_token,
                          confirmation_token_expires
                        )
                        values ($1, $2, $3, $4, $5, 'pending', $6, $7)
                        returning
                          id::text as id,
                          project_name,
                          company_name,
                          contact_email,
                          contact_phone,
                          additional_details,
                          status,
                          confirmation_token,
                          confirmation_token_expires,
                          created_at
                        """,
                        project_name,
                        company_name,
                        contact_email,
                        contact_phone,
                        additional_details,
                        confirmation_token,
                        confirmation_token_expires,
                    )
                    if not request_row:
                        raise RepositoryWriteError("failed to create labor request")

                    craft_rows = await conn.fetch(
                        f"""
                        insert into labor_request_crafts (
                          labor_request_id,
                          trade_id,
                          region_id,
                          experience_level,
                          worker_count,
                          start_date,
                          duration_days,
                          hours_per_week,
                          notes,
                          pay_rate_min,
                          pay_rate_max,
                          per_diem_rate
                        )
                        select
                          $1::uuid,
                          craft.trade_id,
                          craft.region_id,
                          craft.experience_level,
                          craft.worker_count,
                          craft.start_date,
                          craft.duration_days,
                          craft.hours_per_week,
                          craft.notes,
                          craft.pay_rate_min,
                          craft.pay_rate_max,
                          craft.per_diem_rate
                        from unnest(
                          $2::uuid[],
                          $3::uuid[],
                          $4::text[],
                          $5::int[],
                          $6::date[],
                          $7::int[],
                          $8::int[],
                          $9::text[],
                          $10::float8[],
                          $11::float8[],
                          $12::float8[]
                        ) as craft(
                          trade_id,
                          region_id,
                          experience_level,
                          worker_count,
                          start_date,
                          duration_days,
                          hours_per_week,
                          notes,
                          pay_rate_min,
                          pay_rate_max,
                          per_diem_rate
                        )
                        returning {CRAFT_COLUMNS_SQL}
                        """,
                        request_row["id"],
                        [str(craft["trade_id"]) for craft in crafts],
                        [str(craft["region_id"]) for craft in crafts],
                        [craft["experience_level"] for craft in crafts],
                        [craft["worker_count"] for craft in crafts],
                        [craft["start_date"] for craft in crafts],
                        [craft["duration_days"] for craft in crafts],
                        [craft["hours_per_week"] for craft in crafts],
                        [craft.get("notes") for craft in crafts],
                        [craft.get("pay_rate_min") for craft in crafts],
                        [craft.get("pay_rate_max") for craft in crafts],
                        [craft.get("per_diem_rate") for craft in crafts],
                    )
                    if len(craft_rows) != len(crafts):
                        raise RepositoryWriteError("failed to create craft requirements")
        except pg_exc.ForeignKeyViolationError as exc:
            raise RepositoryValidationError("unknown trade or region") from exc
        except (pg_exc.CheckViolationError, pg_exc.InvalidTextRepresentationError, asyncpg.DataError) as exc:
            raise RepositoryValidationError("labor request violates storage constraints") from exc
        except asyncpg.PostgresError as exc:
            logger.error("labor request insert failed table=labor_requests/labor_request_crafts op=insert: %s", exc)
            raise RepositoryWriteError("failed to create labor request") from exc

        return self._labor_request_row_to_dict(request_row), [self._craft_row_to_dict(row) for row in craft_rows]

    async def get_labor_request_by_token(self, token: str) -> dict[str, Any] | None:
        pool = await self._get_pool()
        try:
            row = await pool.fetchrow(
                """
                select
                  id::text as id,
                  project_name,
                  company_name,
                  contact_email,
                  contact_phone,
                  additional_details,
                  status,
                  confirmation_token,
                  confirmation_token_expires,
                  created_at
                from labor_requests
                where confirmation_token = $1
                """,
                token,
            )
        except asyncpg.PostgresError as exc:
            logger.error("labor request lookup failed table=labor_requests op=select_by_token: %s", exc)
            raise RepositoryUnavailableError("failed to load labor request") from exc
        return self._labor_request_row_to_dict(row) if row else None

    async def get_request_match_breakdown(self, labor_request_id: str) -> list[dict[str, Any]]:
        pool = await self._get_pool()
        try:
            rows = await pool.fetch(
                """
                select
                  c.id::text as craft_id,
                  t.name as trade_name,
                  count(n.id)::int as matches
                from labor_request_crafts c
                left join trades t on t.id = c.trade_id
                left join labor_request_notifications n on n.labor_request_craft_id = c.id
                where c.labor_request_id = $1::uuid
                group by c.id, t.name, c.created_at
                order by c.created_at asc, c.id asc
                """,
                labor_request_id,
            )
        except asyncpg.PostgresError as exc:
            logger.error("match breakdown failed table=labor_request_crafts op=aggregate request=%s: %s", labor_request_id, exc)
            raise RepositoryUnavailableError("failed to load match breakdown") from exc
        return [
            {
                "craft_id": row["craft_id"],
                "trade_name": row["trade_name"],
                "matches": row["matches"],
            }
            for row in rows
        ]

    async def match_agencies_to_craft(self, *, trade_id: str, region_id: str) -> list[dict[str, Any]]:
        pool = await self._get_pool()
        rows = await pool.fetch(
            """
            select m.agency_id::text as agency_id, to_jsonb(m) - 'agency_id' as metadata
            from match_agencies_to_craft($1::uuid, $2::uuid) as m
            """,
            trade_id,
            region_id,
        )
        return [
            {
                "agency_id": row["agency_id"],
                "metadata": self._coerce_json_dict(row["metadata"]),
            }
            for row in rows
        ]

    async def create_notifications(self, rows: list[dict[str, Any]]) -> list[dict[str, Any]]:
        if not rows:
            return []
        pool = await self._get_pool()
        try:
            inserted = await pool.fetch(
                f"""
                insert into labor_request_notifications (
                  labor_request_id,
                  labor_request_craft_id,
                  agency_id,
                  status
                )
                select notification.labor_request_id, notification.craft_id, notification.agency_id, 'pending'
                from unnest($1::uuid[], $2::uuid[], $3::uuid[]) as notification(labor_request_id, craft_id, agency_id)
                returning {NOTIFICATION_COLUMNS_SQL}
                """,
                [row["labor_request_id"] for row in rows],
                [row["craft_id"] for row in rows],
                [row["agency_id"] for row in rows],
            )
        except asyncpg.PostgresError as exc:
            logger.error("notification insert failed table=labor_request_notifications op=insert rows=%s: %s", len(rows), exc)
            raise RepositoryWriteError("failed to create notifications") from exc
        return [self._notification_row_to_dict(row) for row in inserted]

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
        skipped = set(skip_from)
        try:
            async with self._transaction(principal) as conn:
                existing = await conn.fetchrow(
                    f"""
                    select {NOTIFICATION_COLUMNS_SQL}
                    from labor_request_notifications
                    where id = $1::uuid
                    for update
                    """,
                    notification_id,
                )
                if not existing:
                    raise RepositoryNotFoundError("notification not found")

                from_status = str(existing["status"])
                if from_status in skipped or from_status == to_status:
                    return self._notification_row_to_dict(existing)
                self._validate_notification_transition(from_status=from_status, to_status=to_status)

                row = await conn.fetchrow(
                    f"""
                    update labor_request_notifications
                    set
                      status = $2::text,
                      sent_at = case when $2 = 'sent' then $3::timestamptz else sent_at end,
                      delivery_error = case
                        when $2 = 'failed' then $4::text
                        when $2 = 'sent' then null
                        else delivery_error
                      end,
                      viewed_at = case when $2 = 'viewed' then coalesce(viewed_at, $3) else viewed_at end,
                      responded_at = case when $2 = 'responded' then $3 else responded_at end
                    where id = $1::uuid
                    returning {NOTIFICATION_COLUMNS_SQL}
                    """,
                    notification_id,
                    to_status,
                    now,
                    delivery_error,
                )
                if not row:
                    raise RepositoryNotFoundError("notification not found")

                if response is not None:
                    await conn.execute(
                        """
                        insert into labor_request_notification_responses (
                          notification_id,
                          interested,
                          message,
                          created_at
                        )
                        values ($1::uuid, $2, $3, $4)
                        """,
                        notification_id,
                        bool(response.get("interested")),
                        response.get("message"),
                        now,
                    )
                return self._notification_row_to_dict(row)
        except (pg_exc.InvalidTextRepresentationError, asyncpg.DataError) as exc:
            raise RepositoryNotFoundError("notification not found") from exc
        except pg_exc.InsufficientPrivilegeError as exc:
            raise RepositoryNotFoundError("notification not found") from exc
        except asyncpg.PostgresError as exc:
            logger.error(
                "notification transition failed table=labor_request_notifications op=update id=%s to=%s: %s",
                notification_id,
                to_status,
                exc,
            )
            raise RepositoryWriteError("failed to update notification") from exc

    async def observe_agency_notifications(
        self,
        agency_id: str,
        *,
        principal: Principal,
        from_statuses: Iterable[str],
    ) -> int:
        try:
            async with self._transaction(principal) as conn:
                rows = await conn.fetch(
                    """
                    update labor_request_notifications
                    set status = 'new'
                    where agency_id = $1::uuid
                      and status = any($2::text[])
                    returning id
                    """,
                    agency_id,
                    sorted(from_statuses),
                )
        except (pg_exc.InvalidTextRepresentationError, asyncpg.DataError) as exc:
            raise RepositoryNotFoundError("agency not found") from exc
        except asyncpg.PostgresError as exc:
            logger.error(
                "inbox observe failed table=labor_request_notifications op=update agency=%s: %s",
                agency_id,
                exc,
            )
            raise RepositoryWriteError("failed to update notifications") from exc
        return len(rows)

    async def list_agency_inbox(
        self,
        agency_id: str,
        *,
        principal: Principal,
        inbox_filter: InboxFilter,
    ) -> list[dict[str, Any]]:
        params: list[Any] = []

        def bind(value: Any) -> str:
            params.append(value)
            return f"${len(params)}"

        conditions = [f"n.agency_id = {bind(agency_id)}::uuid"]
        conditions.extend(inbox_filter.to_sql_conditions(bind))
        where_sql = " and ".join(conditions)

        try:
            async with self._transaction(principal) as conn:
                rows = await conn.fetch(
                    f"""
                    select
                      n.id::text as id,
                      n.status,
                      n.sent_at,
                      n.viewed_at,
                      n.responded_at,
                      n.created_at,
                      lr.id::text as labor_request_id,
                      lr.project_name,
                      lr.company_name,
                      lr.contact_email,
                      lr.contact_phone,
                      lr.additional_details,
                      c.id::text as craft_id,
                      c.experience_level,
                      c.worker_count,
                      c.start_date,
                      c.duration_days,
                      c.hours_per_week,
                      c.pay_rate_min,
                      c.pay_rate_max,
                      c.per_diem_rate,
                      c.notes,
                      t.name as trade_name,
                      r.name as region_name,
                      r.state_code
                    from labor_request_notifications n
                    join labor_requests lr on lr.id = n.labor_request_id
                    join labor_request_crafts c on c.id = n.labor_request_craft_id
                    left join trades t on t.id = c.trade_id
                    left join regions r on r.id = c.region_id
                    where {where_sql}
                    order by n.created_at desc, n.id asc
                    """,
                    *params,
                )
        except (pg_exc.InvalidTextRepresentationError, asyncpg.DataError) as exc:
            raise RepositoryNotFoundError("agency not found") from exc
        except asyncpg.PostgresError as exc:
            logger.error(
                "inbox load failed table=labor_request_notifications op=select agency=%s: %s",
                agency_id,
                exc,
            )
            raise RepositoryUnavailableError("failed to load inbox") from exc
        return [self._inbox_row_to_dict(row) for row in rows]

    @asynccontextmanager
    async def _transaction(self, principal: Principal | None) -> AsyncIterator[asyncpg.Connection]:
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            async with conn.transaction():
                if principal is not None:
                    await conn.execute("set local role authenticated")
                    await conn.execute(
                        "select set_config('request.jwt.claims', $1, true)",
                        json.dumps(principal.jwt_claims()),
                    )
                yield conn

    async def _get_pool(self) -> asyncpg.Pool:
        if not self.database_url:
            raise RepositoryUnavailableError("LL_DATABASE_URL is required")

        if self._pool is not None:
            return self._pool

        try:
            self._pool = await asyncpg.create_pool(
                dsn=self.database_url,
                min_size=self.min_pool_size,
                max_size=self.max_pool_size,
                command_timeout=15,
            )
            return self._pool
        except Exception as exc:  # pragma: no cover - depends on environment
            raise RepositoryUnavailableError("database unavailable") from exc

    @staticmethod
    def _validate_notification_transition(*, from_status: str, to_status: str) -> None:
        if not is_transition_allowed(from_status, to_status):
            raise RepositoryConflictError(f"invalid notification status transition: {from_status} -> {to_status}")

    @staticmethod
    def _labor_request_row_to_dict(row: asyncpg.Record) -> dict[str, Any]:
        return {
            "id": row["id"],
            "project_name": row["project_name"],
            "company_name": row["company_name"],
            "contact_email": row["contact_email"],
            "contact_phone": row["contact_phone"],
            "additional_details": row["additional_details"],
            "status": row["status"],
            "confirmation_token": row["confirmation_token"],
            "confirmation_token_expires": row["confirmation_token_expires"],
            "created_at": row["created_at"],
        }

    def _craft_row_to_dict(self, row: asyncpg.Record) -> dict[str, Any]:
        return {
            "id": row["id"],
            "labor_request_id": row["labor_request_id"],
            "trade_id": row["trade_id"],
            "region_id": row["region_id"],
            "experience_level": row["experience_level"],
            "worker_count": row["worker_count"],
            "start_date": row["start_date"],
            "duration_days": row["duration_days"],
            "hours_per_week": row["hours_per_week"],
            "pay_rate_min": self._coerce_float(row["pay_rate_min"]),
            "pay_rate_max": self._coerce_float(row["pay_rate_max"]),
            "per_diem_rate": self._coerce_float(row["per_diem_rate"]),
            "notes": row["notes"],
            "created_at": row["created_at"],
        }

    @staticmethod
    def _notification_row_to_dict(row: asyncpg.Record) -> dict[str, Any]:
        return {
            "id": row["id"],
            "labor_request_id": row["labor_request_id"],
            "craft_id": row["craft_id"],
            "agency_id": row["agency_id"],
            "status": row["status"],
            "sent_at": row["sent_at"],
            "viewed_at": row["viewed_at"],
            "responded_at": row["responded_at"],
            "delivery_error": row["delivery_error"],
            "created_at": row["created_at"],
        }

    def _inbox_row_to_dict(self, row: asyncpg.Record) -> dict[str, Any]:
        return {
            "id": row["id"],
            "status": row["status"],
            "sent_at": row["sent_at"],
            "viewed_at": row["viewed_at"],
            "responded_at": row["responded_at"],
            "created_at": row["created_at"],
            "labor_request": {
                "id": row["labor_request_id"],
                "project_name": row["project_name"],
                "company_name": row["company_name"],
                "contact_email": row["contact_email"],
                "contact_phone": row["contact_phone"],
                "additional_details": row["additional_details"],
            },
            "craft": {
                "id": row["craft_id"],
                "trade_name": row["trade_name"],
                "region_name": row["region_name"],
                "state_code": row["state_code"],
                "experience_level": row["experience_level"],
                "worker_count": row["worker_count"],
                "start_date": self._coerce_date(row["start_date"]),
                "duration_days": row["duration_days"],
                "hours_per_week": row["hours_per_week"],
                "pay_rate_min": self._coerce_float(row["pay_rate_min"]),
                "pay_rate_max": self._coerce_float(row["pay_rate_max"]),
                "per_diem_rate": self._coerce_float(row["per_diem_rate"]),
                "notes": row["notes"],
            },
        }

    @staticmethod
    def _coerce_float(value: Any) -> float | None:
        if value is None:
            return None
        if isinstance(value, Decimal):
            return float(value)
        try:
            return float(value)
        except (TypeError, ValueError):
            return None

    @staticmethod
    def _coerce_date(value: Any) -> date | None:
        if isinstance(value, datetime):
            return value.date()
        if isinstance(value, date):
            return value
        return None

    @staticmethod
    def _coerce_json_dict(value: Any) -> dict[str, Any]:
        if isinstance(value, str):
            try:
                value = json.loads(value)
            except json.JSONDecodeError:
                return {}
        if isinstance(value, dict):
            return value
        return {}


@lru_cache
def get_repository() -> PostgresRepository:
    settings = get_settings()
    return PostgresRepository(
        database_url=settings.database_url,
        min_pool_size=settings.database_pool_min_size,
        max_pool_size=settings.database_pool_max_size,
    )
