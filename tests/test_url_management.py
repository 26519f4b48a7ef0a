"""Analytics, listing and deletion endpoint tests."""

import pytest
from httpx import AsyncClient

from urlshortener.enums import RecordStatus


async def _shorten(client: AsyncClient, url: str, **extra) -> str:
    response = await client.post("/api/shorten", json={"url": url, **extra})
    assert response.status_code == 201
    return response.json()["short_code"]


@pytest.mark.asyncio
async def test_analytics_valid_code(client: AsyncClient) -> None:
    short_code = await _shorten(client, "https://www.google.com")

    response = await client.get(f"/api/analytics/{short_code}")
    assert response.status_code == 200
    data = response.json()
    assert data["short_code"] == short_code
    assert data["original_url"] == "https://www.google.com"
    assert data["click_count"] == 0
    assert data["total_clicks"] == 0
    assert data["unique_visitors"] == 0
    assert data["status"] == RecordStatus.ACTIVE.value
    assert "created_at" in data


@pytest.mark.asyncio
async def test_analytics_invalid_code(client: AsyncClient) -> None:
    response = await client.get("/api/analytics/nonexistent")
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_analytics_unique_visitors(client: AsyncClient, recorder) -> None:
    short_code = await _shorten(client, "https://www.example.com")

    for ip in ("192.0.2.1", "192.0.2.1", "192.0.2.2", "192.0.2.3", "192.0.2.3"):
        await client.get(f"/{short_code}", follow_redirects=False, headers={"X-Forwarded-For": ip})
    await recorder.drain()

    data = (await client.get(f"/api/analytics/{short_code}")).json()
    assert data["total_clicks"] == 5
    assert data["unique_visitors"] == 3
    assert data["last_accessed_at"] is not None


@pytest.mark.asyncio
async def test_list_urls(client: AsyncClient) -> None:
    codes = [await _shorten(client, f"https://example.com/{i}") for i in range(3)]

    response = await client.get("/api/urls")

    assert response.status_code == 200
    assert {item["short_code"] for item in response.json()} == set(codes)


@pytest.mark.asyncio
async def test_list_urls_paging(client: AsyncClient) -> None:
    for i in range(3):
        await _shorten(client, f"https://example.com/{i}")

    first = (await client.get("/api/urls", params={"limit": 2})).json()
    rest = (await client.get("/api/urls", params={"limit": 2, "offset": 2})).json()

    assert len(first) == 2
    assert len(rest) == 1


@pytest.mark.asyncio
@pytest.mark.parametrize("params", [{"limit": 0}, {"limit": 101}, {"offset": -1}])
async def test_list_urls_rejects_bad_paging(client: AsyncClient, params: dict) -> None:
    response = await client.get("/api/urls", params=params)
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_delete_url(client: AsyncClient) -> None:
    short_code = await _shorten(client, "https://www.python.org")

    response = await client.delete(f"/api/{short_code}")
    assert response.status_code == 200
    assert response.json()["success"] is True

    assert (await client.get(f"/{short_code}", follow_redirects=False)).status_code == 404
    assert short_code not in {item["short_code"] for item in (await client.get("/api/urls")).json()}

    analytics = (await client.get(f"/api/analytics/{short_code}")).json()
    assert analytics["status"] == RecordStatus.DELETED.value


@pytest.mark.asyncio
async def test_delete_twice(client: AsyncClient) -> None:
    short_code = await _shorten(client, "https://www.python.org")
    await client.delete(f"/api/{short_code}")

    response = await client.delete(f"/api/{short_code}")
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_shorten_after_delete_issues_new_code(client: AsyncClient) -> None:
    short_code = await _shorten(client, "https://www.python.org")
    await client.delete(f"/api/{short_code}")

    assert await _shorten(client, "https://www.python.org") != short_code
