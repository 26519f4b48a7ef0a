"""Client IP extraction for rate limiting and analytics."""

import pytest
from starlette.requests import Request

from urlshortener.dependencies import get_client_ip


def _request(headers: dict[str, str], client: tuple[str, int] | None = ("10.0.0.9", 5000)) -> Request:
    scope = {
        "type": "http",
        "method": "GET",
        "path": "/",
        "headers": [(k.lower().encode(), v.encode()) for k, v in headers.items()],
        "client": client,
    }
    return Request(scope)


@pytest.mark.parametrize(
    "headers, expected",
    [
        ({"X-Forwarded-For": "203.0.113.5, 10.0.0.1"}, "203.0.113.5"),
        ({"X-Forwarded-For": " 203.0.113.5 "}, "203.0.113.5"),
        ({"X-Real-IP": "198.51.100.4"}, "198.51.100.4"),
        ({"X-Forwarded-For": "203.0.113.5", "X-Real-IP": "198.51.100.4"}, "203.0.113.5"),
        ({}, "10.0.0.9"),
    ],
)
def test_get_client_ip(headers, expected) -> None:
    assert get_client_ip(_request(headers)) == expected


def test_get_client_ip_without_peer() -> None:
    assert get_client_ip(_request({}, client=None)) == "unknown"
