"""Token-gated submission summary.

The lookup runs on the elevated path: the submitter has no session, and a
row-authorized read keyed by token would let any caller enumerate other requests.
"""

from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Any

from laborline.core.masking import mask_email, mask_phone
from laborline.services.repository import LaborRequestRepository

TOKEN_RE = re.compile(r"^[0-9a-fA-F]{64}$")
UNKNOWN_TRADE = "Unknown Trade"


class TokenFormatError(ValueError):
    pass


class TokenNotFoundError(LookupError):
    pass


class TokenExpiredError(Exception):
    pass


def parse_expiry(value: Any) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


async def get_summary(
    repository: LaborRequestRepository,
    token: str | None,
    *,
    now: datetime | None = None,
) -> dict[str, Any]:
    if not token or not TOKEN_RE.fullmatch(token):
        raise TokenFormatError("invalid token format")

    request = await repository.get_labor_request_by_token(token)
    if request is None:
        raise TokenNotFoundError("labor request not found")

    expires_at = parse_expiry(request.get("confirmation_token_expires"))
    now = now or datetime.now(timezone.utc)
    if expires_at is None or now > expires_at:
        raise TokenExpiredError("confirmation token expired")

    breakdown = await repository.get_request_match_breakdown(str(request["id"]))
    by_craft = [
        {
            "craft_name": item.get("trade_name") or UNKNOWN_TRADE,
            "matches": item.get("matches") or 0,
        }
        for item in breakdown
    ]
    return {
        "success": True,
        "request": {
            "id": str(request["id"]),
            "project_name": request["project_name"],
            "company_name": request["company_name"],
            "contact_email": mask_email(request["contact_email"] or ""),
            "contact_phone": mask_phone(request.get("contact_phone")),
            "submitted_at": request["created_at"],
            "craft_count": len(breakdown),
        },
        "matches": {
            "total": sum(item["matches"] for item in by_craft),
            "by_craft": by_craft,
        },
        "expires_at": expires_at,
    }
