import pytest

from communitymedia.config import settings
from communitymedia.services import migration_ledger

from .utils import InMemoryMigrationRecords

pytestmark = pytest.mark.anyio("asyncio")

ADMIN_HEADERS = {"X-Admin-Token": "admin-secret"}


@pytest.fixture
def admin_token(monkeypatch):
    monkeypatch.setattr(settings, "admin_api_token", "admin-secret")


@pytest.fixture
def ledger_rows(monkeypatch):
    rows = InMemoryMigrationRecords()
    rows.install(monkeypatch, migration_ledger.records_repo)
    return rows


async def test_admin_api_disabled_without_token(async_client, monkeypatch):
    monkeypatch.setattr(settings, "admin_api_token", None)

    resp = await async_client.get("/api/admin/media/migration/stats", headers=ADMIN_HEADERS)

    assert resp.status_code == 503


async def test_admin_api_rejects_wrong_token(async_client, admin_token):
    resp = await async_client.get(
        "/api/admin/media/migration/stats", headers={"X-Admin-Token": "nope"}
    )
    assert resp.status_code == 401

    resp = await async_client.get("/api/admin/media/migration/stats")
    assert resp.status_code == 401


async def test_migration_stats_and_records(async_client, admin_token, ledger_rows):
    record = await migration_ledger.create_record(
        "forum-media/a.png", "FORUM", "forum", storage_key="forum/a.png"
    )
    await migration_ledger.update_status(record.id, "failed", error_message="timeout")

    stats = await async_client.get("/api/admin/media/migration/stats", headers=ADMIN_HEADERS)
    assert stats.status_code == 200
    assert stats.json() == {"total": 1, "pending": 0, "migrated": 0, "failed": 1, "verified": 0}

    records = await async_client.get(
        "/api/admin/media/migration/records",
        params={"status": "failed", "bucket": "FORUM"},
        headers=ADMIN_HEADERS,
    )
    assert records.status_code == 200
    payload = records.json()
    assert [item["source_location"] for item in payload] == ["forum-media/a.png"]
    assert payload[0]["error_message"] == "timeout"
    assert payload[0]["verified"] is False


async def test_normalize_preview(async_client, admin_token):
    resp = await async_client.get(
        "/api/admin/media/normalize",
        params={"url": "/uploads/calendar/a.jpg"},
        headers=ADMIN_HEADERS,
    )

    assert resp.status_code == 200
    assert resp.json() == {
        "url": "/uploads/calendar/a.jpg",
        "normalized": "/api/storage-proxy/CALENDAR/events/a.jpg",
    }
