"""
Product → membership mapping resolution.

A mapping table is an ordered list of entries, each linking one or more
ThriveCart product identifiers to a single MemberPress membership. Entries
are stored as plain dicts (that is how the admin tooling persists them) and
come in two shapes:

- current: ``{"membership_id": 7, "tc_product_ids": ["31", "32"], ...}``
- legacy:  ``{"membership_id": 7, "tc_product_id": "31, 32"}``

Resolution is first-match-wins in table order.
"""

import logging
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)


class PaymentType(str, Enum):
    """Payment type filter attached to a mapping entry."""

    ANY = "any"
    ONETIME = "onetime"
    RECURRING_MONTHLY = "recurring_monthly"
    RECURRING_3MONTH = "recurring_3month"
    RECURRING_6MONTH = "recurring_6month"
    RECURRING_ANNUAL = "recurring_annual"
    TRIAL = "trial"


PAYMENT_TYPE_LABELS = {
    PaymentType.ANY.value: "Any",
    PaymentType.ONETIME.value: "One-Time",
    PaymentType.RECURRING_MONTHLY.value: "Monthly",
    PaymentType.RECURRING_3MONTH.value: "3 Months",
    PaymentType.RECURRING_6MONTH.value: "6 Months",
    PaymentType.RECURRING_ANNUAL.value: "Annual",
    PaymentType.TRIAL.value: "Trial",
}


def payment_type_label(payment_type: str | None) -> str:
    """Human label for a payment type; unknown values pass through."""
    if not payment_type:
        return PAYMENT_TYPE_LABELS[PaymentType.ANY.value]
    return PAYMENT_TYPE_LABELS.get(payment_type, payment_type)


@dataclass
class MappingEntry:
    """A normalized, resolved mapping entry."""

    membership_id: int
    product_ids: list[str] = field(default_factory=list)
    payment_type: str = PaymentType.ANY.value
    label: str = ""
    active: bool = True

    @classmethod
    def from_raw(cls, raw: Mapping[str, Any]) -> "MappingEntry":
        """Build an entry from a stored mapping dict (either format)."""
        return cls(
            membership_id=int(raw.get("membership_id") or 0),
            product_ids=normalize_product_ids(raw),
            payment_type=raw.get("payment_type") or PaymentType.ANY.value,
            label=raw.get("label") or "",
            active=is_mapping_active(raw),
        )

    @property
    def payment_type_label(self) -> str:
        return payment_type_label(self.payment_type)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the current stored format."""
        return {
            "membership_id": self.membership_id,
            "tc_product_ids": list(self.product_ids),
            "payment_type": self.payment_type,
            "label": self.label,
            "active": "1" if self.active else "0",
        }


def is_mapping_active(raw: Mapping[str, Any]) -> bool:
    """An entry is active when ``active`` is absent, true, or ``"1"``."""
    if "active" not in raw:
        return True
    value = raw["active"]
    if isinstance(value, str):
        return value.strip() == "1"
    return value is True or value == 1


def _split_ids(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, (list, tuple, set)):
        return [str(item).strip() for item in value if item is not None]
    text = str(value)
    if "," in text:
        return [piece.strip() for piece in text.split(",")]
    return [text.strip()]


def normalize_product_ids(raw: Mapping[str, Any]) -> list[str]:
    """
    Return the product ids of a stored entry as a list of trimmed strings.

    ``tc_product_ids`` wins when it is a list; otherwise whichever of
    ``tc_product_ids`` / ``tc_product_id`` is set is read as a
    comma-separated string or a single scalar. Empty ids are dropped and
    order is preserved.
    """
    value = raw.get("tc_product_ids")
    if not isinstance(value, (list, tuple, set)):
        value = value if value not in (None, "") else raw.get("tc_product_id")
    return [pid for pid in _split_ids(value) if pid]


def resolve_mapping(
    product_id: Any,
    mappings: Sequence[Mapping[str, Any]],
) -> MappingEntry | None:
    """
    Resolve a ThriveCart product id to its mapping entry.

    Args:
        product_id: Product identifier extracted from the webhook
        mappings: Stored mapping table, in priority order

    Returns:
        The first active entry whose ids contain ``product_id``, or None
    """
    needle = str(product_id).strip() if product_id is not None else ""
    if not needle:
        return None

    match: MappingEntry | None = None
    for raw in mappings:
        if not isinstance(raw, Mapping) or not is_mapping_active(raw):
            continue
        ids = normalize_product_ids(raw)
        if needle not in ids:
            continue
        if match is None:
            match = MappingEntry.from_raw(raw)
            continue
        # Later active entry claims the same id; first one still wins.
        logger.warning(
            "Product %s is mapped by more than one active entry "
            "(using membership %s, ignoring membership %s)",
            needle,
            match.membership_id,
            raw.get("membership_id"),
        )
    return match


def find_overlapping_product_ids(
    mappings: Iterable[Mapping[str, Any]],
) -> dict[str, list[int]]:
    """Map each product id claimed by 2+ active entries to their membership ids."""
    claims: dict[str, list[int]] = {}
    for raw in mappings:
        if not isinstance(raw, Mapping) or not is_mapping_active(raw):
            continue
        membership_id = int(raw.get("membership_id") or 0)
        for pid in dict.fromkeys(normalize_product_ids(raw)):
            claims.setdefault(pid, []).append(membership_id)
    return {pid: owners for pid, owners in claims.items() if len(owners) > 1}


def count_active_mappings(mappings: Iterable[Mapping[str, Any]]) -> int:
    """Number of active entries that carry at least one product id."""
    return sum(
        1
        for raw in mappings
        if isinstance(raw, Mapping) and is_mapping_active(raw) and normalize_product_ids(raw)
    )


def migrate_legacy_mappings(
    mappings: Sequence[Mapping[str, Any]],
) -> tuple[list[dict[str, Any]], bool]:
    """
    Upgrade legacy single-id entries to the multi-id format.

    Legacy entries (``tc_product_id`` without ``tc_product_ids``) gain a
    normalized ``tc_product_ids`` list plus ``payment_type``, ``label`` and
    ``active`` defaults. The legacy key is kept. Already-migrated entries are
    copied unchanged, so applying this twice gives the same table.

    Returns:
        Tuple of (migrated table, whether anything changed)
    """
    migrated: list[dict[str, Any]] = []
    changed = False

    for raw in mappings:
        entry = dict(raw)
        if "tc_product_id" in entry and "tc_product_ids" not in entry:
            entry["tc_product_ids"] = _split_ids_nonempty(entry["tc_product_id"])
            entry.setdefault("payment_type", PaymentType.ANY.value)
            entry.setdefault("label", "")
            entry.setdefault("active", "1")
            changed = True
        migrated.append(entry)

    return migrated, changed


def _split_ids_nonempty(value: Any) -> list[str]:
    return [pid for pid in _split_ids(value) if pid]
