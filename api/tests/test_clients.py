from __future__ import annotations

import pytest
from starlette.requests import Request

from laborline.core.clients import UNKNOWN_CLIENT, get_client_ip, hash_client_key


def _request(headers: dict[str, str], client: tuple[str, int] | None = None) -> Request:
    scope = {
        "type": "http",
        "method": "GET",
        "path": "/monitoring/metrics",
        "headers": [(name.lower().encode("latin-1"), value.encode("latin-1")) for name, value in headers.items()],
        "client": client,
    }
    return Request(scope)


@pytest.mark.parametrize(
    ("headers", "client", "expected"),
    [
        ({"x-forwarded-for": "10.0.0.4, 93.184.216.34"}, None, "93.184.216.34"),
        ({"x-forwarded-for": "10.0.0.4, 192.168.1.9"}, None, "10.0.0.4"),
        ({"x-forwarded-for": "garbage, 198.51.100.2:8080"}, None, "198.51.100.2"),
        ({"x-real-ip": "198.51.100.3", "cf-connecting-ip": "198.51.100.4"}, None, "198.51.100.3"),
        ({"cf-connecting-ip": "2001:db8::1"}, None, "2001:db8::1"),
        ({"x-client-ip": "[2001:db8::2]:443"}, None, "2001:db8::2"),
        ({}, ("198.51.100.9", 5000), "198.51.100.9"),
        ({}, ("testclient", 50000), UNKNOWN_CLIENT),
        ({"x-real-ip": "nope"}, None, UNKNOWN_CLIENT),
    ],
)
def test_get_client_ip(headers: dict[str, str], client: tuple[str, int] | None, expected: str) -> None:
    assert get_client_ip(_request(headers, client)) == expected


def test_hash_client_key_never_contains_raw_address() -> None:
    key = hash_client_key("203.0.113.7", salt="salt-a")

    assert "203.0.113.7" not in key
    assert len(key) == 64
    assert key == hash_client_key("203.0.113.7", salt="salt-a")
    assert key != hash_client_key("203.0.113.7", salt="salt-b")


def test_unknown_clients_share_five_minute_slots() -> None:
    first = hash_client_key(UNKNOWN_CLIENT, salt="s", now=600.0)
    same_slot = hash_client_key(UNKNOWN_CLIENT, salt="s", now=899.0)
    next_slot = hash_client_key(UNKNOWN_CLIENT, salt="s", now=900.0)

    assert first == same_slot
    assert first != next_slot
