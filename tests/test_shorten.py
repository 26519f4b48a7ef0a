"""Shorten endpoint behavior tests."""

import pytest
from httpx import AsyncClient

from urlshortener.codegen import ALPHABET


@pytest.mark.asyncio
async def test_shorten_valid_url(client: AsyncClient, settings) -> None:
    response = await client.post("/api/shorten", json={"url": "https://www.google.com"})
    assert response.status_code == 201
    data = response.json()
    assert data["original_url"] == "https://www.google.com"
    assert len(data["short_code"]) == 7
    assert all(c in ALPHABET for c in data["short_code"])
    assert data["short_url"] == f"{settings.BASE_URL}/{data['short_code']}"
    assert data["expires_at"] is None
    assert data["existing"] is False


@pytest.mark.asyncio
async def test_shorten_same_url_returns_existing(client: AsyncClient) -> None:
    first = await client.post("/api/shorten", json={"url": "https://www.github.com"})
    second = await client.post("/api/shorten", json={"url": "https://www.github.com"})

    assert first.status_code == 201
    assert second.status_code == 200
    assert second.json()["existing"] is True
    assert second.json()["short_code"] == first.json()["short_code"]


@pytest.mark.asyncio
async def test_shorten_with_expiry_creates_new_code(client: AsyncClient) -> None:
    first = await client.post("/api/shorten", json={"url": "https://www.github.com"})
    second = await client.post("/api/shorten", json={"url": "https://www.github.com", "expires_in": 3600})

    assert second.status_code == 201
    assert second.json()["short_code"] != first.json()["short_code"]
    assert second.json()["expires_at"] is not None


@pytest.mark.asyncio
async def test_shorten_invalid_url(client: AsyncClient) -> None:
    response = await client.post("/api/shorten", json={"url": "not-a-url"})
    assert response.status_code == 422
    data = response.json()
    assert data["error"] == "Validation failed"
    assert data["field"] == "url"


@pytest.mark.asyncio
async def test_shorten_empty_url(client: AsyncClient) -> None:
    response = await client.post("/api/shorten", json={"url": ""})
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_shorten_non_http_scheme(client: AsyncClient) -> None:
    response = await client.post("/api/shorten", json={"url": "javascript:alert(1)"})
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_shorten_url_too_long(client: AsyncClient) -> None:
    response = await client.post("/api/shorten", json={"url": "https://example.com/" + "a" * 2048})
    assert response.status_code == 422


@pytest.mark.asyncio
@pytest.mark.parametrize("expires_in", [0, 59, 31536001])
async def test_shorten_expiry_out_of_range(client: AsyncClient, expires_in: int) -> None:
    response = await client.post("/api/shorten", json={"url": "https://www.github.com", "expires_in": expires_in})
    assert response.status_code == 422
    assert response.json()["field"] == "expires_in"


@pytest.mark.asyncio
async def test_shorten_multiple_urls(client: AsyncClient) -> None:
    urls = [
        "https://www.google.com",
        "https://www.github.com",
        "https://www.python.org",
    ]
    codes = set()
    for url in urls:
        response = await client.post("/api/shorten", json={"url": url})
        assert response.status_code == 201
        codes.add(response.json()["short_code"])
    assert len(codes) == 3


@pytest.mark.asyncio
async def test_shorten_create_limit(client: AsyncClient) -> None:
    for i in range(10):
        response = await client.post("/api/shorten", json={"url": f"https://example.com/{i}"})
        assert response.status_code == 201

    response = await client.post("/api/shorten", json={"url": "https://example.com/one-too-many"})

    assert response.status_code == 429
    assert "retry_at" in response.json()
    assert 0 < int(response.headers["retry-after"]) <= 900


@pytest.mark.asyncio
async def test_create_limit_is_per_forwarded_ip(client: AsyncClient) -> None:
    for i in range(10):
        await client.post(
            "/api/shorten",
            json={"url": f"https://example.com/{i}"},
            headers={"X-Forwarded-For": "198.51.100.1, 10.0.0.1"},
        )

    response = await client.post(
        "/api/shorten",
        json={"url": "https://example.com/other-client"},
        headers={"X-Forwarded-For": "198.51.100.2"},
    )
    assert response.status_code == 201


@pytest.mark.asyncio
async def test_suspicious_url_is_accepted(client: AsyncClient, redis_client) -> None:
    response = await client.post("/api/shorten", json={"url": "https://example.com/phishing-kit"})

    assert response.status_code == 201
    assert int(await redis_client.get("abuse:127.0.0.1")) == 1


@pytest.mark.asyncio
async def test_blocked_ip_is_refused(client: AsyncClient, guard) -> None:
    for _ in range(51):
        await guard.track_suspicious_url("127.0.0.1", "https://example.com/malware")

    response = await client.post("/api/shorten", json={"url": "https://www.python.org"})

    assert response.status_code == 429
    data = response.json()
    assert "unblock_at" in data
    assert int(response.headers["retry-after"]) == 3600
