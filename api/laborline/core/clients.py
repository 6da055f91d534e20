"""Client identification for rate limiting.

Only a keyed hash of the client address ever leaves this module, so limiter
state never holds raw addresses.
"""

import hashlib
import hmac
import ipaddress
import time

from starlette.requests import Request

FORWARDED_HEADERS = ("x-real-ip", "cf-connecting-ip", "x-client-ip")
UNKNOWN_CLIENT = "unknown"
UNKNOWN_CLIENT_SLOT_SECONDS = 5 * 60


def get_client_ip(request: Request) -> str:
    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        candidates = [_validate_ip(chunk) for chunk in forwarded_for.split(",")]
        valid = [ip for ip in candidates if ip is not None]
        public = [ip for ip in valid if not _is_private(ip)]
        if public:
            return public[0]
        if valid:
            return valid[0]

    for header in FORWARDED_HEADERS:
        value = request.headers.get(header)
        if not value:
            continue
        validated = _validate_ip(value)
        if validated:
            return validated

    if request.client is not None:
        validated = _validate_ip(request.client.host)
        if validated:
            return validated

    return UNKNOWN_CLIENT


def hash_client_key(client_ip: str, *, salt: str, now: float | None = None) -> str:
    if client_ip == UNKNOWN_CLIENT:
        # Unknown clients share a short time slot instead of one permanent bucket.
        slot = int((now if now is not None else time.time()) // UNKNOWN_CLIENT_SLOT_SECONDS)
        return f"{UNKNOWN_CLIENT}-{slot}"
    return hmac.new(salt.encode("utf-8"), client_ip.encode("utf-8"), hashlib.sha256).hexdigest()


def _validate_ip(raw: str) -> str | None:
    candidate = raw.strip()
    if not candidate:
        return None
    if candidate.startswith("["):
        # [v6]:port
        candidate = candidate[1:].split("]", maxsplit=1)[0]
    elif candidate.count(":") == 1:
        # v4:port
        candidate = candidate.split(":", maxsplit=1)[0]
    try:
        return str(ipaddress.ip_address(candidate))
    except ValueError:
        return None


def _is_private(ip: str) -> bool:
    address = ipaddress.ip_address(ip)
    return address.is_private or address.is_loopback or address.is_link_local
