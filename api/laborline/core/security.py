import hashlib
import hmac
from typing import Any

import httpx
from fastapi import Depends, Header, HTTPException, Request, status

from laborline.core.auth import Principal, PrincipalType
from laborline.core.config import Settings, get_settings

ROLE_SCOPES: dict[str, set[str]] = {
    "user": set(),
    "contractor": set(),
    "agency_owner": {"notifications:read", "notifications:write"},
    "admin": {"notifications:read", "notifications:write", "admin:read"},
}


async def get_human_principal(
    settings: Settings = Depends(get_settings),
    authorization: str | None = Header(default=None, alias="Authorization"),
) -> Principal:
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="human auth requires bearer token",
        )

    token = authorization.split(" ", maxsplit=1)[1].strip()
    if not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="empty bearer token")

    if not settings.supabase_url or not settings.supabase_anon_key:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Supabase auth is not configured",
        )

    user = await _fetch_supabase_user(
        supabase_url=settings.supabase_url,
        supabase_anon_key=settings.supabase_anon_key,
        token=token,
        timeout_seconds=settings.auth_timeout_seconds,
    )
    user_id = user.get("id")
    if not isinstance(user_id, str) or not user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid bearer token")

    role = _resolve_human_role(user)
    email = user.get("email")
    app_metadata = user.get("app_metadata")

    return Principal(
        principal_type=PrincipalType.HUMAN,
        subject=user_id,
        role=role,
        email=email if isinstance(email, str) else None,
        scopes=ROLE_SCOPES.get(role, ROLE_SCOPES["user"]),
        claims={"app_metadata": dict(app_metadata) if isinstance(app_metadata, dict) else {}},
    )


async def get_delivery_principal(
    request: Request,
    settings: Settings = Depends(get_settings),
) -> Principal:
    """Authenticates the email collaborator that reports delivery outcomes."""
    if not settings.delivery_api_key:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="delivery reporting is not configured",
        )

    provided = request.headers.get(settings.api_key_header)
    if not provided:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"delivery reporting requires {settings.api_key_header}",
        )

    expected_hash = hashlib.sha256(settings.delivery_api_key.encode("utf-8")).hexdigest()
    provided_hash = hashlib.sha256(provided.encode("utf-8")).hexdigest()
    if not hmac.compare_digest(expected_hash, provided_hash):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid delivery credentials")

    return Principal(
        principal_type=PrincipalType.SERVICE,
        subject="notification-delivery",
        scopes={"notifications:deliver"},
    )


def is_monitoring_request_authorized(settings: Settings, provided_key: str | None) -> bool:
    if not settings.is_production:
        return True
    if not settings.monitoring_api_key or not provided_key:
        return False
    return hmac.compare_digest(settings.monitoring_api_key.encode("utf-8"), provided_key.encode("utf-8"))


async def _fetch_supabase_user(
    *,
    supabase_url: str,
    supabase_anon_key: str,
    token: str,
    timeout_seconds: float,
) -> dict[str, Any]:
    headers = {
        "Authorization": f"Bearer {token}",
        "apikey": supabase_anon_key,
    }
    url = f"{supabase_url.rstrip('/')}/auth/v1/user"

    try:
        async with httpx.AsyncClient(timeout=timeout_seconds) as client:
            response = await client.get(url, headers=headers)
    except httpx.HTTPError as exc:  # pragma: no cover - network dependent
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Supabase auth verification unavailable",
        ) from exc

    if response.status_code in {401, 403}:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid bearer token")
    if response.status_code != 200:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Supabase auth verification failed",
        )

    return response.json()


def _resolve_human_role(user: dict[str, Any]) -> str:
    # user_metadata is writable by the user, so roles only come from app_metadata.
    app_metadata = user.get("app_metadata")
    if isinstance(app_metadata, dict):
        role = app_metadata.get("role")
        if isinstance(role, str) and role in ROLE_SCOPES:
            return role

    return "user"
