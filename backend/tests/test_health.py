from contextlib import asynccontextmanager

import pytest


@pytest.mark.anyio("asyncio")
async def test_healthz(async_client):
    resp = await async_client.get("/healthz")
    assert resp.status_code == 200
    assert resp.json().get("ok") is True


@pytest.mark.anyio("asyncio")
async def test_readyz_handles_db_failure(async_client, monkeypatch):
    @asynccontextmanager
    async def _broken_conn():
        raise RuntimeError("db down")
        yield

    monkeypatch.setattr("communitymedia.main.get_conn", _broken_conn)
    resp = await async_client.get("/readyz")
    assert resp.status_code == 503
    assert resp.json()["detail"] == "database unavailable"


@pytest.mark.anyio("asyncio")
async def test_metrics_exposes_proxy_counters(async_client):
    await async_client.get("/api/storage-proxy/BANNER/banner-slides/missing.jpg")

    resp = await async_client.get("/metrics")

    assert resp.status_code == 200
    assert "storage_proxy_misses_total" in resp.text
