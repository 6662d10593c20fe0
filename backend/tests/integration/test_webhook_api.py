"""
Integration tests for the ThriveCart webhook endpoint.

Tests the full request path (form decoding, configuration snapshot,
orchestration, MemberPress calls, sync log) including:
- Cancellation via active subscription
- Cancellation of a non-recurring purchase
- Partial refund
- Authentication failure
- Ignored events
"""

from unittest.mock import patch

import pytest
from fastapi import status
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from infrastructure.database.models import SyncLogEntry

SECRET = "test-thrivecart-secret"
HOOK_URL = "/api/v1/thrivecart-hook"


def _cancel_form(**overrides) -> dict:
    form = {
        "event": "order.subscription_cancelled",
        "thrivecart_secret": SECRET,
        "customer[email]": "jane@example.com",
        "subscription[id]": "42",
    }
    form.update(overrides)
    return form


def _refund_form(**overrides) -> dict:
    form = {
        "event": "order.refund",
        "thrivecart_secret": SECRET,
        "customer[email]": "jane@example.com",
        "refund[product_id]": "42",
        "refund[amount]": "2500",
        "refund[type]": "partial",
    }
    form.update(overrides)
    return form


@pytest.fixture
def member(memberpress_server):
    memberpress_server.add_member(7, "jane@example.com", active_memberships=[100])
    memberpress_server.add_membership(100, title="Pro Membership")
    return memberpress_server.members[7]


class TestWebhookInfo:
    """Tests for GET/HEAD /thrivecart-hook."""

    @pytest.mark.asyncio
    async def test_get_reports_ready(self, async_client: AsyncClient):
        response = await async_client.get(HOOK_URL)

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["ok"] is True
        assert data["version"] == "2.2.2"
        assert "refund" in data["features"]

    @pytest.mark.asyncio
    async def test_head(self, async_client: AsyncClient):
        response = await async_client.head(HOOK_URL)

        assert response.status_code == status.HTTP_200_OK
        assert response.content == b""


class TestWebhookScenarios:
    """End-to-end webhook scenarios."""

    @pytest.mark.asyncio
    async def test_cancellation_with_active_subscription(
        self, async_client, stored_mappings, member, memberpress_server, notifier
    ):
        memberpress_server.add_subscription(900, 7, 100)

        response = await async_client.post(HOOK_URL, data=_cancel_form())

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["ok"] is True
        assert data["action_type"] == "cancellation"
        assert data["user_id"] == 7
        assert data["membership_id"] == 100
        assert data["results"][0]["sub_id"] == 900
        assert data["results"][0]["access_until_end_of_period"] is True
        assert memberpress_server.subscriptions[900]["status"] == "cancelled"
        notifier.send_sync_notification.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_cancellation_without_subscriptions_keeps_existing_expiration(
        self, async_client, stored_mappings, member, memberpress_server
    ):
        memberpress_server.add_transaction(501, 7, 100, expires_at="2099-12-31 23:59:59")

        response = await async_client.post(HOOK_URL, data=_cancel_form())

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["ok"] is True
        assert data["results"][0]["method"] == "existing_expiration"
        assert memberpress_server.writes == []

    @pytest.mark.asyncio
    async def test_partial_refund(self, async_client, stored_mappings, member, memberpress_server):
        memberpress_server.add_transaction(501, 7, 100, total="49.00")

        response = await async_client.post(HOOK_URL, data=_refund_form())

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["action_type"] == "refund"
        outcome = data["results"][0]
        assert outcome["partial"] is True
        assert outcome["refunded_amount"] == "25.00"
        assert outcome["original_amount"] == "49.00"
        refund_request = memberpress_server.requests_to("POST", "transactions/501/refund")[0]
        assert refund_request["json"]["amount"] == "25.00"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("secret", [None, "wrong-secret"])
    async def test_auth_failure_returns_empty_200(
        self, async_client, stored_mappings, member, memberpress_server, secret
    ):
        form = _refund_form()
        if secret is None:
            del form["thrivecart_secret"]
        else:
            form["thrivecart_secret"] = secret

        response = await async_client.post(HOOK_URL, data=form)

        assert response.status_code == status.HTTP_200_OK
        assert response.content == b""
        assert memberpress_server.requests == []

    @pytest.mark.asyncio
    async def test_ignored_event(self, async_client, stored_mappings, memberpress_server):
        response = await async_client.post(
            HOOK_URL, data={"event": "order.subscription_payment", "thrivecart_secret": SECRET}
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.json() == {"ok": True, "message": "Event type ignored"}
        assert memberpress_server.requests == []


class TestWebhookErrors:
    """Error responses are still HTTP 200."""

    @pytest.mark.asyncio
    async def test_no_mapping(self, async_client, stored_mappings, member):
        response = await async_client.post(HOOK_URL, data=_cancel_form(**{"subscription[id]": "77"}))

        assert response.status_code == status.HTTP_200_OK
        assert response.json() == {"ok": False, "error": "No mapping found for product"}

    @pytest.mark.asyncio
    async def test_user_not_found(self, async_client, stored_mappings, member):
        response = await async_client.post(
            HOOK_URL, data=_cancel_form(**{"customer[email]": "ghost@example.com"})
        )

        assert response.json() == {"ok": False, "error": "User not found"}

    @pytest.mark.asyncio
    async def test_unexpected_exception(self, async_client, db_session: AsyncSession, stored_mappings, sync_service):
        with patch.object(sync_service, "process_event", side_effect=RuntimeError("boom")):
            response = await async_client.post(HOOK_URL, data=_cancel_form())

        assert response.status_code == status.HTTP_200_OK
        assert response.json() == {"ok": False, "error": "Internal error"}

        entries = (await db_session.execute(select(SyncLogEntry))).scalars().all()
        assert len(entries) == 1
        assert entries[0].state == "rejected"
        assert entries[0].error == "Internal error"
        assert entries[0].event_type == "order.subscription_cancelled"
        assert entries[0].customer_email == "jane@example.com"

    @pytest.mark.asyncio
    async def test_unusable_refund_amount_is_full_refund(
        self, async_client, stored_mappings, member, memberpress_server
    ):
        memberpress_server.add_transaction(501, 7, 100, total="49.00")

        response = await async_client.post(HOOK_URL, data=_refund_form(**{"refund[amount]": "Infinity"}))

        data = response.json()
        assert data["ok"] is True
        assert data["results"][0]["partial"] is False
        refund_request = memberpress_server.requests_to("POST", "transactions/501/refund")[0]
        assert "amount" not in refund_request["json"]

    @pytest.mark.asyncio
    async def test_out_of_range_billing_period_end_uses_default_expiration(
        self, async_client, db_session: AsyncSession, stored_mappings, member, memberpress_server
    ):
        memberpress_server.add_transaction(501, 7, 100, created_at="2025-03-01 00:00:00")

        response = await async_client.post(
            HOOK_URL, data=_cancel_form(**{"subscription[billing_period_end]": "99999999999999"})
        )

        data = response.json()
        assert data["ok"] is True
        assert data["results"][0]["method"] == "default_calculation"
        assert memberpress_server.transactions[501]["expires_at"] == "2025-04-01 00:00:00"
        entries = (await db_session.execute(select(SyncLogEntry))).scalars().all()
        assert entries[0].state == "done"

    @pytest.mark.asyncio
    async def test_json_body_is_accepted(self, async_client, stored_mappings, member, memberpress_server):
        memberpress_server.add_subscription(900, 7, 100)

        response = await async_client.post(
            HOOK_URL,
            json={
                "event": "order.rebill_cancelled",
                "thrivecart_secret": SECRET,
                "customer": {"email": "jane@example.com"},
                "subscription": {"id": "42"},
            },
        )

        assert response.json()["action_type"] == "cancellation"


class TestSyncLog:
    """Every POST leaves one derived log row."""

    @pytest.mark.asyncio
    async def test_processed_event_is_logged(
        self, async_client, db_session: AsyncSession, stored_mappings, member, memberpress_server
    ):
        memberpress_server.add_subscription(900, 7, 100)

        await async_client.post(HOOK_URL, data=_cancel_form())

        entries = (await db_session.execute(select(SyncLogEntry))).scalars().all()
        assert len(entries) == 1
        entry = entries[0]
        assert entry.ok is True
        assert entry.state == "done"
        assert entry.event_type == "order.subscription_cancelled"
        assert entry.customer_email == "jane@example.com"
        assert entry.product_id == "42"
        assert entry.member_id == 7
        assert entry.membership_id == 100
        assert entry.action_type == "cancellation"
        assert entry.results[0]["sub_id"] == 900

    @pytest.mark.asyncio
    async def test_rejected_event_is_logged_without_secret(
        self, async_client, db_session: AsyncSession, stored_mappings
    ):
        await async_client.post(HOOK_URL, data=_cancel_form(thrivecart_secret="leaked-guess"))

        entries = (await db_session.execute(select(SyncLogEntry))).scalars().all()
        assert len(entries) == 1
        assert entries[0].state == "rejected"
        assert entries[0].error == "Authentication failed"
        assert "leaked-guess" not in str(vars(entries[0]))
