from __future__ import annotations

import re
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from laborline.services.lifecycle import ALLOWED_TRANSITIONS

LIKE_ESCAPE_CHAR = "\\"


class InvalidFilterError(ValueError):
    """Raised when an inbox filter value is not recognized."""


def escape_like(term: str) -> str:
    # Backslash first so the escapes added for % and _ are not doubled.
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def contains_pattern(term: str) -> str:
    return f"%{escape_like(term)}%"


def ilike_matches(pattern: str, value: str) -> bool:
    """Evaluates a pattern with Postgres ILIKE semantics (backslash escape)."""
    regex_parts: list[str] = []
    index = 0
    while index < len(pattern):
        char = pattern[index]
        if char == LIKE_ESCAPE_CHAR and index + 1 < len(pattern):
            regex_parts.append(re.escape(pattern[index + 1]))
            index += 2
            continue
        if char == "%":
            regex_parts.append(".*")
        elif char == "_":
            regex_parts.append(".")
        else:
            regex_parts.append(re.escape(char))
        index += 1
    return re.fullmatch("".join(regex_parts), value, flags=re.IGNORECASE | re.DOTALL) is not None


@dataclass(slots=True, frozen=True)
class InboxFilter:
    status: str | None = None
    search: str | None = None

    @property
    def search_pattern(self) -> str | None:
        if self.search is None:
            return None
        return contains_pattern(self.search)

    def to_sql_conditions(self, bind: Callable[[Any], str], *, request_alias: str = "lr", notification_alias: str = "n") -> list[str]:
        conditions: list[str] = []
        if self.status is not None:
            conditions.append(f"{notification_alias}.status = {bind(self.status)}")
        pattern = self.search_pattern
        if pattern is not None:
            token = bind(pattern)
            conditions.append(
                f"({request_alias}.project_name ilike {token} escape '\\' "
                f"or {request_alias}.company_name ilike {token} escape '\\')"
            )
        return conditions

    def matches(self, *, status: str, project_name: str, company_name: str) -> bool:
        if self.status is not None and status != self.status:
            return False
        pattern = self.search_pattern
        if pattern is None:
            return True
        return ilike_matches(pattern, project_name) or ilike_matches(pattern, company_name)


def build_inbox_filter(*, search: str | None, status: str | None) -> InboxFilter:
    normalized_status = (status or "").strip().lower() or None
    if normalized_status == "all":
        normalized_status = None
    if normalized_status is not None and normalized_status not in ALLOWED_TRANSITIONS:
        raise InvalidFilterError(f"unknown notification status: {normalized_status}")

    normalized_search = (search or "").strip() or None
    return InboxFilter(status=normalized_status, search=normalized_search)
