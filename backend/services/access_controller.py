"""
Remote access control against MemberPress.

Turns a resolved refund or cancellation into MemberPress side effects and
reports what happened as a list of outcome dicts. Each outcome carries either
``success: True`` or an ``error`` string. Ordinary remote failures never
raise out of this module; they walk the fallback chain and end up as
outcomes.

Fallback chains:

- refund: native refund endpoint → manual status update + forced expiry
- cancellation: cancel active subscriptions → non-recurring handling
- non-recurring: existing expiration → webhook billing_period_end
  → created_at + membership period
"""

import logging
from collections.abc import Callable, Iterable
from datetime import datetime
from typing import Any

from adapters.memberpress import (
    MemberPressAdapter,
    MemberPressError,
    MemberPressTransaction,
)
from core.domain.events import ThriveCartEvent
from core.domain.expiration import (
    ExpirationError,
    default_expiration,
    format_remote_datetime,
    from_period_end,
    is_valid_expiration,
    utcnow,
)

logger = logging.getLogger(__name__)

Outcome = dict[str, Any]


def select_latest_transaction(
    transactions: Iterable[MemberPressTransaction],
) -> MemberPressTransaction | None:
    """Transaction with the highest positive id; the first one wins a tie."""
    latest: MemberPressTransaction | None = None
    for transaction in transactions:
        if transaction.id > (latest.id if latest else 0):
            latest = transaction
    return latest


def _error_code(exc: MemberPressError) -> int | None:
    return getattr(exc, "status_code", None)


class RemoteAccessController:
    """Performs refunds and cancellations in MemberPress with layered fallbacks."""

    def __init__(
        self,
        memberpress: MemberPressAdapter,
        now: Callable[[], datetime] = utcnow,
    ):
        self.memberpress = memberpress
        self._now = now

    # ------------------------------------------------------------------
    # Refunds
    # ------------------------------------------------------------------

    async def do_refund(
        self,
        member_id: int,
        membership_id: int,
        amount: str | None = None,
    ) -> list[Outcome]:
        """
        Refund the member's most recent complete transaction for a membership.

        Args:
            member_id: MemberPress member id
            membership_id: Membership the refunded product maps to
            amount: Partial refund amount ("25.00"); None for a full refund

        Returns:
            A single-item outcome list
        """
        if not self.memberpress.is_configured:
            logger.error("MemberPress API key not set")
            return [{"error": "API key not configured"}]

        try:
            transactions = await self.memberpress.list_transactions(
                member_id, membership_id, status="complete"
            )
        except MemberPressError as e:
            logger.error("Failed to fetch transactions for refund: %s", e)
            return [{"error": f"Failed to fetch transactions: {e}"}]

        if not transactions:
            logger.warning(
                "No complete transactions found to refund (member=%s, membership=%s)",
                member_id,
                membership_id,
            )
            return [{"error": "No complete transactions found to refund"}]

        transaction = select_latest_transaction(transactions)
        if transaction is None:
            return [{"error": "No valid transaction found"}]

        original_amount = f"{transaction.total:.2f}"
        partial = amount is not None and amount != ""
        logger.info(
            "Processing %s refund for transaction %s (original=%s, refund=%s)",
            "partial" if partial else "full",
            transaction.id,
            original_amount,
            amount or "full",
            extra={"trans_id": transaction.id, "membership_id": membership_id},
        )

        try:
            body = await self.memberpress.refund_transaction(
                transaction.id, amount=amount, send_notification=True
            )
        except MemberPressError as e:
            logger.warning(
                "MemberPress refund API failed for transaction %s (%s); trying manual fallback",
                transaction.id,
                e,
                extra={"trans_id": transaction.id},
            )
            return [await self._manual_refund_fallback(transaction, member_id, membership_id, e)]

        refunded_amount = body.get("refunded_amount")
        if refunded_amount is None:
            refunded_amount = body.get("total")
        if refunded_amount is None:
            refunded_amount = amount if partial else original_amount

        logger.info(
            "MemberPress refund processed for transaction %s (refunded=%s)",
            transaction.id,
            refunded_amount,
            extra={"trans_id": transaction.id, "membership_id": membership_id},
        )
        # MemberPress cancels the subscription, revokes access, updates its
        # reports and emails the member as part of the refund call.
        return [
            {
                "success": True,
                "trans_id": transaction.id,
                "status": "refunded",
                "refunded_amount": refunded_amount,
                "original_amount": original_amount,
                "partial": partial,
                "subscription_cancelled": "automatic",
                "access_revoked": "automatic",
                "statistics_updated": True,
                "email_sent": True,
                "message": "Refund processed via MemberPress native API",
            }
        ]

    async def _manual_refund_fallback(
        self,
        transaction: MemberPressTransaction,
        member_id: int,
        membership_id: int,
        refund_error: MemberPressError,
    ) -> Outcome:
        """Mark the transaction refunded directly, then end access now."""
        try:
            await self.memberpress.update_transaction(transaction.id, status="refunded")
        except MemberPressError as e:
            logger.error(
                "Manual refund fallback failed for transaction %s: %s",
                transaction.id,
                e,
                extra={"trans_id": transaction.id},
            )
            return {
                "error": "Refund API failed and fallback failed",
                "trans_id": transaction.id,
                "code": _error_code(e),
                "refund_error": str(refund_error),
            }

        # The status update alone does not revoke access.
        expired_at = format_remote_datetime(self._now())
        membership_expired = await self._push_expiration(transaction.id, expired_at)

        still_active: bool | None = None
        try:
            member = await self.memberpress.get_member(member_id)
            still_active = membership_id in member.active_memberships
        except MemberPressError as e:
            logger.warning("Could not verify access revocation for member %s: %s", member_id, e)

        if still_active:
            logger.warning(
                "Membership %s still listed as active for member %s after fallback refund",
                membership_id,
                member_id,
                extra={"member_id": member_id, "membership_id": membership_id},
            )

        logger.info(
            "Fallback refund successful for transaction %s (membership_expired=%s)",
            transaction.id,
            membership_expired,
            extra={"trans_id": transaction.id},
        )
        return {
            "success": True,
            "trans_id": transaction.id,
            "status": "refunded",
            "method": "fallback",
            "membership_expired": membership_expired,
            "expiration_set": expired_at if membership_expired else None,
            "membership_still_active": still_active,
            "refund_error": str(refund_error),
            "message": "Transaction marked as refunded (fallback method)",
        }

    # ------------------------------------------------------------------
    # Cancellations
    # ------------------------------------------------------------------

    async def do_cancellation(
        self,
        member_id: int,
        membership_id: int,
        event: ThriveCartEvent | None = None,
    ) -> list[Outcome]:
        """
        Cancel the member's active subscriptions for a membership.

        Members without a subscription object (one-time purchases, manual
        gateway) go through :meth:`handle_non_recurring` instead.

        Returns:
            One outcome per active subscription, or the non-recurring outcome
        """
        if not self.memberpress.is_configured:
            logger.error("MemberPress API key not set")
            return [{"error": "API key not configured"}]

        try:
            subscriptions = await self.memberpress.list_subscriptions(
                member_id, membership_id, status="active"
            )
        except MemberPressError as e:
            logger.info("Failed to fetch subscriptions for cancellation (%s); using non-recurring path", e)
            return await self.handle_non_recurring(member_id, membership_id, event)

        if not subscriptions:
            logger.info(
                "No active subscriptions for member %s / membership %s; using non-recurring path",
                member_id,
                membership_id,
            )
            return await self.handle_non_recurring(member_id, membership_id, event)

        results: list[Outcome] = []
        for subscription in subscriptions:
            if not subscription.id or subscription.status != "active":
                continue

            try:
                body = await self.memberpress.cancel_subscription(
                    subscription.id, send_notification=True
                )
            except MemberPressError as e:
                logger.error(
                    "MemberPress cancellation API failed for subscription %s: %s",
                    subscription.id,
                    e,
                    extra={"sub_id": subscription.id},
                )
                results.append(
                    {
                        "error": f"Cancellation API failed: {e}",
                        "sub_id": subscription.id,
                        "code": _error_code(e),
                    }
                )
                continue

            status = body.get("status") or "cancelled"
            expires_at = body.get("expires_at")
            logger.info(
                "Subscription %s cancelled (status=%s, expires_at=%s)",
                subscription.id,
                status,
                expires_at,
                extra={"sub_id": subscription.id, "membership_id": membership_id},
            )
            results.append(
                {
                    "success": True,
                    "sub_id": subscription.id,
                    "status": status,
                    "expires_at": expires_at,
                    "access_until_end_of_period": True,
                    "auto_billing_stopped": True,
                    "statistics_updated": True,
                    "email_sent": True,
                    "message": "Cancellation processed via MemberPress native API",
                }
            )

        if not results:
            logger.info("No subscriptions were cancelled; using non-recurring path")
            return await self.handle_non_recurring(member_id, membership_id, event)

        return results

    async def handle_non_recurring(
        self,
        member_id: int,
        membership_id: int,
        event: ThriveCartEvent | None = None,
    ) -> list[Outcome]:
        """
        Make sure a non-recurring purchase ends at the right time.

        Keeps the latest transaction's expiration when it is already valid,
        otherwise sets one from the webhook's billing period end or, failing
        that, from ``created_at`` plus the membership period.
        """
        if not self.memberpress.is_configured:
            return [{"error": "API key not configured"}]

        try:
            transactions = await self.memberpress.list_transactions(
                member_id, membership_id, status="complete"
            )
        except MemberPressError as e:
            logger.error(
                "Failed to fetch transactions for cancellation (member=%s, membership=%s): %s",
                member_id,
                membership_id,
                e,
            )
            return [{"error": "Failed to fetch transactions"}]

        if not transactions:
            logger.info(
                "No complete transactions found for cancellation (member=%s, membership=%s)",
                member_id,
                membership_id,
            )
            return [{"message": "No transactions found"}]

        transaction = select_latest_transaction(transactions)
        if transaction is None:
            return [{"error": "No valid transaction found"}]

        if is_valid_expiration(transaction.expires_at, now=self._now()):
            logger.info(
                "Cancellation: transaction %s already expires at %s (gateway=%s)",
                transaction.id,
                transaction.expires_at,
                transaction.gateway,
                extra={"trans_id": transaction.id},
            )
            return [
                {
                    "success": True,
                    "trans_id": transaction.id,
                    "gateway": transaction.gateway,
                    "expires_at": transaction.expires_at,
                    "method": "existing_expiration",
                    "message": "Using existing transaction expiration",
                }
            ]

        logger.info(
            "Transaction %s has no valid expiration (%r); setting one",
            transaction.id,
            transaction.expires_at,
            extra={"trans_id": transaction.id},
        )

        expires_at = self._webhook_expiration(event)
        if expires_at is not None:
            if await self._push_expiration(transaction.id, expires_at):
                return [
                    {
                        "success": True,
                        "trans_id": transaction.id,
                        "gateway": transaction.gateway,
                        "expires_at": expires_at,
                        "method": "webhook_billing_period_end",
                        "message": "Expiration set from ThriveCart webhook",
                    }
                ]

        outcome = await self._set_default_expiration(transaction, membership_id)
        if outcome is not None:
            return [outcome]

        return [{"error": "Failed to set expiration", "trans_id": transaction.id}]

    @staticmethod
    def _webhook_expiration(event: ThriveCartEvent | None) -> str | None:
        period_end = event.billing_period_end() if event is not None else None
        if period_end is None:
            return None
        try:
            return format_remote_datetime(from_period_end(period_end))
        except ExpirationError as e:
            logger.warning("Ignoring webhook billing_period_end: %s", e)
            return None

    async def _set_default_expiration(
        self,
        transaction: MemberPressTransaction,
        membership_id: int,
    ) -> Outcome | None:
        """created_at + membership period, pushed to the transaction."""
        if not transaction.created_at:
            logger.warning("Cannot calculate expiration for transaction %s: no created_at", transaction.id)
            return None

        try:
            membership = await self.memberpress.get_membership(membership_id)
        except MemberPressError as e:
            logger.error("Failed to fetch membership %s details: %s", membership_id, e)
            return None

        try:
            expires = default_expiration(
                transaction.created_at, membership.period_unit, membership.period_count
            )
        except ExpirationError as e:
            logger.error("Cannot calculate expiration for transaction %s: %s", transaction.id, e)
            return None

        expires_at = format_remote_datetime(expires)
        if not await self._push_expiration(transaction.id, expires_at):
            return None

        logger.info(
            "Transaction %s expiration set to %s (created_at %s + %s %s)",
            transaction.id,
            expires_at,
            transaction.created_at,
            membership.period_count,
            membership.period_unit,
            extra={"trans_id": transaction.id, "membership_id": membership_id},
        )
        return {
            "success": True,
            "trans_id": transaction.id,
            "gateway": transaction.gateway,
            "expires_at": expires_at,
            "period": f"{membership.period_count} {membership.period_unit}",
            "method": "default_calculation",
            "message": "Expiration calculated and set (created_at + period)",
        }

    async def _push_expiration(self, transaction_id: int, expires_at: str) -> bool:
        try:
            await self.memberpress.update_transaction(transaction_id, expires_at=expires_at)
        except MemberPressError as e:
            logger.error(
                "Failed to update expiration of transaction %s: %s",
                transaction_id,
                e,
                extra={"trans_id": transaction_id},
            )
            return False
        logger.info("Transaction %s expiration updated to %s", transaction_id, expires_at)
        return True
