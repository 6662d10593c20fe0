"""
ThriveCart webhook events: classification and payload access.

ThriveCart posts ``application/x-www-form-urlencoded`` bodies that use PHP
bracket notation for nested values (``customer[email]=...``). The HTTP layer
folds those into nested dicts with :func:`parse_form_payload`; everything
downstream reads the payload through :class:`ThriveCartEvent`.
"""

import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any


class EventKind(str, Enum):
    """What the sync engine does with an event."""

    REFUND = "refund"
    CANCELLATION = "cancellation"
    IGNORED = "ignored"


REFUND_EVENTS = frozenset({"order.refund", "order.refunded"})
CANCELLATION_EVENTS = frozenset({"order.subscription_cancelled", "order.rebill_cancelled"})

# Where the product id may live, in priority order, per event kind.
PRODUCT_ID_PATHS: dict[EventKind, tuple[tuple[str, ...], ...]] = {
    EventKind.REFUND: (
        ("refund", "product_id"),
        ("refund", "id"),
        ("refund", "bump_id"),
        ("refund", "upsell_id"),
        ("base_product",),
    ),
    EventKind.CANCELLATION: (
        ("subscription", "id"),
        ("subscription_id",),
        ("base_product",),
    ),
}

EMAIL_PATHS: tuple[tuple[str, ...], ...] = (
    ("customer", "email"),
    ("customer_email",),
)


class EventValidationError(ValueError):
    """Raised when a webhook payload lacks a field the sync needs."""


def classify(event_type: Any) -> EventKind:
    """Classify a ThriveCart event type. Unknown or missing types are ignored."""
    if not isinstance(event_type, str):
        return EventKind.IGNORED
    if event_type in REFUND_EVENTS:
        return EventKind.REFUND
    if event_type in CANCELLATION_EVENTS:
        return EventKind.CANCELLATION
    return EventKind.IGNORED


_BRACKET_KEY = re.compile(r"^([^\[\]]+)((?:\[[^\[\]]*\])*)$")


def parse_form_payload(items: Iterable[tuple[str, Any]]) -> dict[str, Any]:
    """
    Fold bracket-notation form fields into nested dicts.

    ``[("customer[email]", "a@b.c"), ("event", "order.refund")]`` becomes
    ``{"customer": {"email": "a@b.c"}, "event": "order.refund"}``. Empty
    brackets (``items[]``) append to a list. Later values overwrite earlier
    ones, the same way PHP builds ``$_POST``.
    """
    payload: dict[str, Any] = {}

    for key, value in items:
        match = _BRACKET_KEY.match(key)
        if not match:
            payload[key] = value
            continue

        parts = [match.group(1)] + re.findall(r"\[([^\[\]]*)\]", match.group(2))
        node: Any = payload
        for index, part in enumerate(parts):
            last = index == len(parts) - 1
            if isinstance(node, list):
                if last:
                    node.append(value)
                    break
                child: Any = [] if parts[index + 1] == "" else {}
                node.append(child)
                node = child
                continue
            if last:
                if part == "":
                    break
                node[part] = value
                break
            nxt = node.get(part)
            if not isinstance(nxt, (dict, list)):
                nxt = [] if parts[index + 1] == "" else {}
                node[part] = nxt
            node = nxt

    return payload


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


@dataclass
class ThriveCartEvent:
    """Read-only view over an inbound webhook payload."""

    raw: Mapping[str, Any] = field(default_factory=dict)

    def get(self, *path: str) -> Any:
        """Return the value at a nested path, or None when any step is absent."""
        node: Any = self.raw
        for part in path:
            if not isinstance(node, Mapping) or part not in node:
                return None
            node = node[part]
        return node

    def first_present(self, paths: Iterable[tuple[str, ...]]) -> Any:
        """Value of the first path holding a non-blank value."""
        for path in paths:
            value = self.get(*path)
            if not _is_blank(value):
                return value
        return None

    @property
    def event_type(self) -> str:
        value = self.get("event")
        return str(value) if value is not None else ""

    @property
    def kind(self) -> EventKind:
        return classify(self.get("event"))

    @property
    def secret(self) -> str | None:
        value = self.get("thrivecart_secret")
        return str(value) if not _is_blank(value) else None

    def customer_email(self) -> str:
        """Customer email; raises EventValidationError when missing."""
        value = self.first_present(EMAIL_PATHS)
        if value is None:
            raise EventValidationError("Missing email")
        return str(value).strip()

    def product_id(self, kind: EventKind | None = None) -> str:
        """
        Product id for the given event kind.

        Raises:
            EventValidationError: When no id is present or it is "null"
        """
        kind = kind or self.kind
        paths = PRODUCT_ID_PATHS.get(kind, ())
        value = self.first_present(paths)
        if value is None or str(value).strip() == "null":
            raise EventValidationError("Missing product ID")
        return str(value).strip()

    def product_id_paths(self, kind: EventKind | None = None) -> str:
        """Dotted list of the paths checked for the product id (for logs)."""
        kind = kind or self.kind
        return ", ".join(".".join(path) for path in PRODUCT_ID_PATHS.get(kind, ()))

    def refund_amount(self) -> str | None:
        """
        Refund amount as a two-decimal string, converted from cents.

        Returns None (full refund) when the payload carries no usable amount.
        """
        cents = self.get("refund", "amount")
        if _is_blank(cents):
            return None
        try:
            amount = Decimal(str(cents).strip()) / Decimal(100)
            if not amount.is_finite() or amount <= 0:
                return None
            return str(amount.quantize(Decimal("0.01")))
        except (InvalidOperation, ValueError):
            return None

    def refund_type(self) -> str:
        value = self.get("refund", "type")
        return str(value) if not _is_blank(value) else "full"

    def billing_period_end(self) -> int | None:
        """``subscription.billing_period_end`` as epoch seconds, if present."""
        value = self.get("subscription", "billing_period_end")
        if _is_blank(value):
            return None
        try:
            return int(float(str(value).strip()))
        except (OverflowError, ValueError):
            return None

    def summary(self) -> dict[str, Any]:
        """Loggable summary; never includes the shared secret."""
        return {
            "event": self.event_type,
            "customer_email": self.first_present(EMAIL_PATHS),
            "base_product": self.get("base_product"),
            "order_id": self.get("order_id"),
        }
