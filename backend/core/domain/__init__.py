# Domain logic
# Pure functions and value objects with no I/O
from .events import EventKind, EventValidationError, ThriveCartEvent, classify, parse_form_payload
from .expiration import (
    ExpirationError,
    default_expiration,
    from_period_end,
    is_valid_expiration,
)
from .mapping import (
    MappingEntry,
    PaymentType,
    find_overlapping_product_ids,
    migrate_legacy_mappings,
    payment_type_label,
    resolve_mapping,
)

__all__ = [
    "EventKind",
    "EventValidationError",
    "ThriveCartEvent",
    "classify",
    "parse_form_payload",
    "ExpirationError",
    "default_expiration",
    "from_period_end",
    "is_valid_expiration",
    "MappingEntry",
    "PaymentType",
    "find_overlapping_product_ids",
    "migrate_legacy_mappings",
    "payment_type_label",
    "resolve_mapping",
]
