"""
Resend email service adapter.
"""

import json
import logging
from datetime import UTC, datetime
from html import escape
from typing import Any, Optional

import resend

from infrastructure.config.settings import settings

logger = logging.getLogger(__name__)

REFUND_SUBJECT = "⚠️ ThriveCart REFUND processed"
CANCELLATION_SUBJECT = "ThriveCart cancellation synced"


class ResendEmailService:
    """Email service using Resend API."""

    def __init__(self, api_key: Optional[str] = None, from_email: Optional[str] = None):
        self._api_key = api_key if api_key is not None else settings.resend_api_key
        if self._api_key:
            resend.api_key = self._api_key
        self._from_email = from_email or settings.resend_from_email

    async def send_sync_notification(
        self,
        to_email: str,
        action_type: str,
        member_email: str,
        member_id: int,
        membership_name: str,
        membership_id: int,
        product_id: str,
        payment_type_label: str,
        results: list[dict[str, Any]],
    ) -> bool:
        """
        Send the administrator a summary of one processed webhook.

        Args:
            to_email: Administrator address
            action_type: "refund" or "cancellation"
            member_email: Member's email address
            member_id: MemberPress member id
            membership_name: Membership title
            membership_id: MemberPress membership id
            product_id: ThriveCart product id from the webhook
            payment_type_label: Label of the matched mapping's payment type
            results: Outcome list from the access controller

        Returns:
            True if sent successfully, False otherwise
        """
        if action_type == "refund":
            subject = REFUND_SUBJECT
            action_description = "REFUND - Access terminated immediately"
        else:
            subject = CANCELLATION_SUBJECT
            action_description = "CANCELLATION - Access until end of period"

        body = self._get_sync_notification_text(
            action_description=action_description,
            member_email=member_email,
            member_id=member_id,
            membership_name=membership_name,
            membership_id=membership_id,
            product_id=product_id,
            payment_type_label=payment_type_label,
            results=results,
        )

        if not self._api_key:
            logger.info("[DEV] Sync notification for %s: %s\n%s", to_email, subject, body)
            return True

        try:
            resend.Emails.send({
                "from": self._from_email,
                "to": to_email,
                "subject": subject,
                "text": body,
                "html": f"<pre>{escape(body)}</pre>",
            })
            return True
        except Exception as e:
            logger.error("Failed to send sync notification to %s: %s", to_email, e)
            return False

    def _get_sync_notification_text(
        self,
        action_description: str,
        member_email: str,
        member_id: int,
        membership_name: str,
        membership_id: int,
        product_id: str,
        payment_type_label: str,
        results: list[dict[str, Any]],
    ) -> str:
        return (
            f"Action Type: {action_description}\n\n"
            f"User: {member_email} (ID {member_id})\n"
            f"Membership: {membership_name} (ID: {membership_id})\n"
            f"ThriveCart Product ID: {product_id}\n"
            f"Payment Type: {payment_type_label}\n"
            f"Results: {json.dumps(results, default=str)}\n"
            f"Time: {datetime.now(UTC).strftime('%Y-%m-%d %H:%M')} UTC"
        )
