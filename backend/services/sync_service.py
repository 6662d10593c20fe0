"""
ThriveCart → MemberPress event orchestration.

One :class:`ThriveCartSyncService` is built at startup and handles every
webhook delivery start to finish:

    RECEIVED → AUTHENTICATED → CLASSIFIED → MAPPED → ACTIONED → NOTIFIED → DONE

Any of authentication, payload validation, mapping or member lookup can end
the run early in REJECTED. Ignored event types finish in DONE right after
classification.
"""

import hmac
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol

from adapters.memberpress import MemberPressAdapter, MemberPressError, MemberPressMember
from core.domain.events import EMAIL_PATHS, EventKind, EventValidationError, ThriveCartEvent
from core.domain.mapping import MappingEntry, resolve_mapping
from services.access_controller import RemoteAccessController
from services.config_store import SyncConfig

logger = logging.getLogger(__name__)

AUTH_FAILED = "Authentication failed"
EVENT_IGNORED = "Event type ignored"
NO_MAPPING = "No mapping found for product"
USER_NOT_FOUND = "User not found"
MEMBER_LOOKUP_FAILED = "Member lookup failed"
INTERNAL_ERROR = "Internal error"
TEST_CANCELLATION_EVENT = "admin.test_cancellation"


class SyncState(str, Enum):
    """Where processing of an event stopped."""

    RECEIVED = "received"
    AUTHENTICATED = "authenticated"
    CLASSIFIED = "classified"
    MAPPED = "mapped"
    ACTIONED = "actioned"
    NOTIFIED = "notified"
    DONE = "done"
    REJECTED = "rejected"


class SyncNotifier(Protocol):
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
    ) -> bool: ...


@dataclass
class SyncResult:
    """Outcome of processing one webhook delivery."""

    ok: bool
    state: SyncState
    event_type: str = ""
    action_type: str | None = None
    user_id: int | None = None
    membership_id: int | None = None
    results: list[dict[str, Any]] = field(default_factory=list)
    message: str | None = None
    error: str | None = None
    customer_email: str | None = None
    product_id: str | None = None
    mapping: MappingEntry | None = None

    @classmethod
    def internal_error(cls, payload: Any) -> "SyncResult":
        """Rejected result for a delivery that failed unexpectedly."""
        summary = ThriveCartEvent(payload if isinstance(payload, dict) else {}).summary()
        email = summary["customer_email"]
        return cls(
            ok=False,
            state=SyncState.REJECTED,
            event_type=summary["event"],
            error=INTERNAL_ERROR,
            customer_email=str(email) if email is not None else None,
        )

    @property
    def authenticated(self) -> bool:
        return not (self.state == SyncState.REJECTED and self.error == AUTH_FAILED)

    def to_response(self) -> dict[str, Any]:
        """Body returned to the webhook caller."""
        if not self.ok:
            return {"ok": False, "error": self.error}
        if self.message and self.action_type is None:
            return {"ok": True, "message": self.message}
        return {
            "ok": True,
            "user_id": self.user_id,
            "membership_id": self.membership_id,
            "action_type": self.action_type,
            "results": self.results,
        }


class ThriveCartSyncService:
    """Coordinates authentication, classification, mapping and remote actions."""

    def __init__(
        self,
        memberpress: MemberPressAdapter,
        notifier: SyncNotifier | None = None,
        access_controller: RemoteAccessController | None = None,
    ):
        self.memberpress = memberpress
        self.notifier = notifier
        self.access_controller = access_controller or RemoteAccessController(memberpress)

    @staticmethod
    def authenticate(configured_secret: str | None, event: ThriveCartEvent) -> bool:
        """Constant-time comparison of the configured and received secrets."""
        if not configured_secret:
            logger.warning("No ThriveCart secret configured; rejecting webhook")
            return False

        received = event.secret
        if not received:
            logger.warning("No thrivecart_secret in webhook payload")
            return False

        if not hmac.compare_digest(configured_secret.encode("utf-8"), received.encode("utf-8")):
            logger.warning("ThriveCart secret mismatch")
            return False

        return True

    async def process_event(self, payload: dict[str, Any], config: SyncConfig) -> SyncResult:
        """
        Process one webhook payload.

        Args:
            payload: Nested webhook payload (see parse_form_payload)
            config: Configuration snapshot for this request

        Returns:
            SyncResult describing where processing stopped and why
        """
        event = ThriveCartEvent(payload)
        event_type = event.event_type
        logger.info("Webhook POST received: %s", event_type or "unknown", extra={"event": event_type})

        if not self.authenticate(config.thrivecart_secret, event):
            return SyncResult(ok=False, state=SyncState.REJECTED, event_type=event_type, error=AUTH_FAILED)

        kind = event.kind
        if kind == EventKind.IGNORED:
            logger.info("Event ignored (not a refund or cancellation): %s", event_type, extra={"event": event_type})
            return SyncResult(ok=True, state=SyncState.DONE, event_type=event_type, message=EVENT_IGNORED)

        try:
            email = event.customer_email()
            product_id = event.product_id(kind)
        except EventValidationError as e:
            logger.warning(
                "Rejected %s webhook: %s (checked: %s)",
                event_type,
                e,
                event.product_id_paths(kind),
                extra={"event": event_type},
            )
            return SyncResult(
                ok=False,
                state=SyncState.REJECTED,
                event_type=event_type,
                error=str(e),
                customer_email=event.first_present(EMAIL_PATHS),
            )

        mapping = resolve_mapping(product_id, config.mappings)
        if mapping is None:
            logger.warning(
                "No mapping found for product %s (%d mappings configured)",
                product_id,
                len(config.mappings),
                extra={"event": event_type},
            )
            return SyncResult(
                ok=False,
                state=SyncState.REJECTED,
                event_type=event_type,
                error=NO_MAPPING,
                customer_email=email,
                product_id=product_id,
            )

        logger.info(
            "Mapping found: product %s → membership %s (payment_type=%s, label=%s)",
            product_id,
            mapping.membership_id,
            mapping.payment_type,
            mapping.label or "unlabeled",
            extra={"membership_id": mapping.membership_id},
        )

        rejected = SyncResult(
            ok=False,
            state=SyncState.REJECTED,
            event_type=event_type,
            customer_email=email,
            product_id=product_id,
            membership_id=mapping.membership_id,
            mapping=mapping,
        )
        member, lookup_error = await self._lookup_member(email)
        if member is None:
            rejected.error = lookup_error
            return rejected

        if kind == EventKind.REFUND:
            amount = event.refund_amount()
            logger.info(
                "Processing REFUND for member %s (amount=%s, type=%s)",
                member.id,
                amount or "full",
                event.refund_type(),
                extra={"member_id": member.id, "membership_id": mapping.membership_id, "action_type": "refund"},
            )
            results = await self.access_controller.do_refund(member.id, mapping.membership_id, amount)
        else:
            logger.info(
                "Processing CANCELLATION for member %s",
                member.id,
                extra={"member_id": member.id, "membership_id": mapping.membership_id, "action_type": "cancellation"},
            )
            results = await self.access_controller.do_cancellation(member.id, mapping.membership_id, event)

        result = SyncResult(
            ok=True,
            state=SyncState.ACTIONED,
            event_type=event_type,
            action_type=kind.value,
            user_id=member.id,
            membership_id=mapping.membership_id,
            results=results,
            customer_email=email,
            product_id=product_id,
            mapping=mapping,
        )

        await self._notify(config, member, result)
        result.state = SyncState.DONE

        logger.info(
            "%s processed for member %s / membership %s",
            kind.value.capitalize(),
            member.id,
            mapping.membership_id,
            extra={"member_id": member.id, "membership_id": mapping.membership_id, "action_type": kind.value},
        )
        return result

    async def simulate_cancellation(self, email: str, membership_id: int) -> SyncResult:
        """
        Run the cancellation flow for a member without a webhook.

        Used by the admin test tool. Real subscriptions are cancelled; no
        notification is sent.
        """
        logger.warning(
            "Simulated cancellation requested for %s / membership %s",
            email,
            membership_id,
            extra={"membership_id": membership_id, "action_type": "cancellation"},
        )
        member, lookup_error = await self._lookup_member(email)
        if member is None:
            return SyncResult(
                ok=False,
                state=SyncState.REJECTED,
                event_type=TEST_CANCELLATION_EVENT,
                error=lookup_error,
                customer_email=email,
                membership_id=membership_id,
            )

        results = await self.access_controller.do_cancellation(member.id, membership_id)
        return SyncResult(
            ok=True,
            state=SyncState.DONE,
            event_type=TEST_CANCELLATION_EVENT,
            action_type=EventKind.CANCELLATION.value,
            user_id=member.id,
            membership_id=membership_id,
            results=results,
            customer_email=email,
        )

    async def _lookup_member(self, email: str) -> tuple[MemberPressMember | None, str | None]:
        """Member for ``email``, or None plus the error to report."""
        try:
            member = await self.memberpress.find_member_by_email(email)
        except MemberPressError as e:
            logger.error("Member lookup failed for %s: %s", email, e)
            return None, MEMBER_LOOKUP_FAILED
        if member is None:
            logger.warning("User not found: %s", email)
            return None, USER_NOT_FOUND
        return member, None

    async def _notify(self, config: SyncConfig, member: MemberPressMember, result: SyncResult) -> None:
        """Email the administrator. Failures are logged and never change the result."""
        if self.notifier is None or not config.admin_email:
            result.state = SyncState.NOTIFIED
            return

        try:
            membership_name = await self.memberpress.get_membership_name(result.membership_id)
            sent = await self.notifier.send_sync_notification(
                to_email=config.admin_email,
                action_type=result.action_type,
                member_email=result.customer_email or member.email,
                member_id=member.id,
                membership_name=membership_name,
                membership_id=result.membership_id,
                product_id=result.product_id or "",
                payment_type_label=result.mapping.payment_type_label if result.mapping else "Any",
                results=result.results,
            )
            if not sent:
                logger.warning("Sync notification to %s was not sent", config.admin_email)
        except Exception:
            logger.exception("Sync notification failed for member %s", member.id)
        result.state = SyncState.NOTIFIED
