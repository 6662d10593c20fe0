"""
Integration tests for the sync admin endpoints.

Tests:
- Admin token enforcement
- Integration status report
- Reading and replacing the mapping table
"""

import pytest
from fastapi import status
from httpx import AsyncClient
from sqlalchemy import select

from infrastructure.database.models import SyncLogEntry, SyncOption, SyncOptionKey

STATUS_URL = "/api/v1/thrivecart-hook-status"
MAPPINGS_URL = "/api/v1/thrivecart-hook-mappings"
OPTIONS_URL = "/api/v1/thrivecart-hook-options"
LOGS_URL = "/api/v1/thrivecart-hook-logs"
TEST_CANCEL_URL = "/api/v1/thrivecart-hook-test-cancel"


class TestAdminAuth:
    """Admin endpoints require the bearer token."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("url", [STATUS_URL, MAPPINGS_URL, LOGS_URL, f"{LOGS_URL}/download"])
    async def test_missing_token(self, async_client: AsyncClient, url):
        response = await async_client.get(url)

        assert response.status_code == status.HTTP_401_UNAUTHORIZED

    @pytest.mark.asyncio
    async def test_wrong_token(self, async_client: AsyncClient):
        response = await async_client.get(STATUS_URL, headers={"Authorization": "Bearer nope"})

        assert response.status_code == status.HTTP_401_UNAUTHORIZED


class TestSyncStatus:
    """Tests for GET /thrivecart-hook-status."""

    @pytest.mark.asyncio
    async def test_status_report(self, async_client, admin_headers, stored_mappings, db_session):
        db_session.add(SyncOption(key=SyncOptionKey.LOG_DAYS, value=45))
        await db_session.commit()

        response = await async_client.get(STATUS_URL, headers=admin_headers)

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["memberpress_detected"] is True
        assert data["secret_configured"] is True
        assert data["api_connected"] is True
        assert data["active_mappings"] == 1
        assert data["options"] == {"log_days": 45, "admin_email": "admin@example.com"}

    @pytest.mark.asyncio
    async def test_status_when_memberpress_unreachable(
        self, async_client, admin_headers, memberpress_server
    ):
        memberpress_server.unreachable = True

        response = await async_client.get(STATUS_URL, headers=admin_headers)

        data = response.json()
        assert data["memberpress_detected"] is False
        assert data["api_connected"] is False
        assert data["active_mappings"] == 0


class TestMappings:
    """Tests for GET/PUT /thrivecart-hook-mappings."""

    @pytest.mark.asyncio
    async def test_get_mappings(self, async_client, admin_headers, stored_mappings):
        response = await async_client.get(MAPPINGS_URL, headers=admin_headers)

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["mappings"] == stored_mappings
        assert data["active_mappings"] == 1
        assert data["warnings"] == []

    @pytest.mark.asyncio
    async def test_get_migrates_legacy_table(self, async_client, admin_headers, db_session):
        db_session.add(SyncOption(
            key=SyncOptionKey.MAPPINGS,
            value=[{"tc_product_id": "31, 32", "membership_id": 5}],
        ))
        await db_session.commit()

        response = await async_client.get(MAPPINGS_URL, headers=admin_headers)

        mapping = response.json()["mappings"][0]
        assert mapping["tc_product_ids"] == ["31", "32"]
        assert mapping["active"] == "1"

    @pytest.mark.asyncio
    async def test_replace_mappings_normalizes_entries(self, async_client, admin_headers):
        response = await async_client.put(
            MAPPINGS_URL,
            headers=admin_headers,
            json={
                "mappings": [
                    {"tc_product_ids": "10, 11", "membership_id": 100, "payment_type": "onetime"},
                    {"tc_product_id": "12", "membership_id": 200, "active": False, "label": "Old"},
                ]
            },
        )

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["mappings"] == [
            {
                "membership_id": 100,
                "tc_product_ids": ["10", "11"],
                "payment_type": "onetime",
                "label": "",
                "active": "1",
            },
            {
                "membership_id": 200,
                "tc_product_ids": ["12"],
                "payment_type": "any",
                "label": "Old",
                "active": "0",
            },
        ]
        assert data["active_mappings"] == 1

        stored = await async_client.get(MAPPINGS_URL, headers=admin_headers)
        assert stored.json()["mappings"] == data["mappings"]

    @pytest.mark.asyncio
    async def test_overlapping_products_are_accepted_with_warning(self, async_client, admin_headers):
        response = await async_client.put(
            MAPPINGS_URL,
            headers=admin_headers,
            json={
                "mappings": [
                    {"tc_product_ids": ["42"], "membership_id": 100},
                    {"tc_product_ids": ["42", "43"], "membership_id": 200},
                ]
            },
        )

        assert response.status_code == status.HTTP_200_OK
        warnings = response.json()["warnings"]
        assert len(warnings) == 1
        assert "Product 42" in warnings[0]
        assert "only membership 100" in warnings[0]

    @pytest.mark.asyncio
    async def test_invalid_membership_id_is_rejected(self, async_client, admin_headers):
        response = await async_client.put(
            MAPPINGS_URL,
            headers=admin_headers,
            json={"mappings": [{"tc_product_ids": ["1"], "membership_id": 0}]},
        )

        assert response.status_code == 422

    @pytest.mark.asyncio
    @pytest.mark.parametrize("entry", [
        {"tc_product_ids": [], "membership_id": 100},
        {"tc_product_ids": " , ", "membership_id": 100, "active": "1"},
    ])
    async def test_active_entry_without_product_ids_is_rejected(self, async_client, admin_headers, entry):
        response = await async_client.put(MAPPINGS_URL, headers=admin_headers, json={"mappings": [entry]})

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_inactive_entry_without_product_ids_is_kept(self, async_client, admin_headers):
        response = await async_client.put(
            MAPPINGS_URL,
            headers=admin_headers,
            json={"mappings": [{"tc_product_ids": [], "membership_id": 100, "active": "0"}]},
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["active_mappings"] == 0


class TestOptions:
    """Tests for PUT /thrivecart-hook-options."""

    @pytest.mark.asyncio
    async def test_update_options(self, async_client, admin_headers):
        response = await async_client.put(
            OPTIONS_URL,
            headers=admin_headers,
            json={"admin_email": "ops@example.com", "log_days": 90},
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.json() == {"log_days": 90, "admin_email": "ops@example.com"}

        status_data = (await async_client.get(STATUS_URL, headers=admin_headers)).json()
        assert status_data["options"] == {"log_days": 90, "admin_email": "ops@example.com"}

    @pytest.mark.asyncio
    async def test_partial_update_keeps_other_option(self, async_client, admin_headers, stored_mappings):
        response = await async_client.put(OPTIONS_URL, headers=admin_headers, json={"log_days": 7})

        assert response.json() == {"log_days": 7, "admin_email": "admin@example.com"}

    @pytest.mark.asyncio
    @pytest.mark.parametrize("body", [{"log_days": 0}, {"log_days": 366}, {"admin_email": "not-an-email"}])
    async def test_invalid_options_are_rejected(self, async_client, admin_headers, body):
        response = await async_client.put(OPTIONS_URL, headers=admin_headers, json=body)

        assert response.status_code == 422


class TestSyncLogs:
    """Tests for the sync log endpoints."""

    @pytest.fixture
    async def log_entries(self, db_session):
        db_session.add_all([
            SyncLogEntry(event_type="order.refund", state="done", ok=True, customer_email="a@example.com",
                         member_id=7, membership_id=100, action_type="refund", results=[{"success": True}]),
            SyncLogEntry(event_type="order.refund", state="rejected", ok=False, error="User not found"),
            SyncLogEntry(event_type=None, state="rejected", ok=False, error="Authentication failed"),
        ])
        await db_session.commit()

    @pytest.mark.asyncio
    async def test_list_newest_first(self, async_client, admin_headers, log_entries):
        response = await async_client.get(LOGS_URL, headers=admin_headers, params={"limit": 2})

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["total"] == 3
        assert [e["error"] for e in data["entries"]] == ["Authentication failed", "User not found"]

    @pytest.mark.asyncio
    async def test_download_csv(self, async_client, admin_headers, log_entries):
        response = await async_client.get(f"{LOGS_URL}/download", headers=admin_headers)

        assert response.status_code == status.HTTP_200_OK
        assert response.headers["content-type"].startswith("text/csv")
        assert "attachment" in response.headers["content-disposition"]
        lines = response.text.strip().splitlines()
        assert lines[0].startswith("id,created_at,event_type")
        assert len(lines) == 4
        assert "a@example.com" in response.text

    @pytest.mark.asyncio
    async def test_clear(self, async_client, admin_headers, log_entries, db_session):
        response = await async_client.delete(LOGS_URL, headers=admin_headers)

        assert response.json() == {"deleted": 3}
        remaining = (await db_session.execute(select(SyncLogEntry))).scalars().all()
        assert remaining == []


class TestSimulatedCancellation:
    """Tests for POST /thrivecart-hook-test-cancel."""

    @pytest.mark.asyncio
    async def test_cancels_and_logs(self, async_client, admin_headers, memberpress_server, db_session):
        memberpress_server.add_member(7, "jane@example.com", active_memberships=[100])
        memberpress_server.add_subscription(900, 7, 100)

        response = await async_client.post(
            TEST_CANCEL_URL,
            headers=admin_headers,
            json={"email": "jane@example.com", "membership_id": 100},
        )

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["action_type"] == "cancellation"
        assert data["results"][0]["sub_id"] == 900
        assert memberpress_server.subscriptions[900]["status"] == "cancelled"
        entries = (await db_session.execute(select(SyncLogEntry))).scalars().all()
        assert [(e.event_type, e.state) for e in entries] == [("admin.test_cancellation", "done")]

    @pytest.mark.asyncio
    async def test_unknown_user(self, async_client, admin_headers, memberpress_server):
        response = await async_client.post(
            TEST_CANCEL_URL,
            headers=admin_headers,
            json={"email": "ghost@example.com", "membership_id": 100},
        )

        assert response.status_code == status.HTTP_404_NOT_FOUND
        assert memberpress_server.writes == []

    @pytest.mark.asyncio
    async def test_requires_admin_token(self, async_client):
        response = await async_client.post(
            TEST_CANCEL_URL, json={"email": "jane@example.com", "membership_id": 100}
        )

        assert response.status_code == status.HTTP_401_UNAUTHORIZED
