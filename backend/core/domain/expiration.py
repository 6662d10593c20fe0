"""
Access-expiration arithmetic.

MemberPress exchanges datetimes as ``YYYY-MM-DD HH:MM:SS`` strings in UTC and
uses two sentinels for "no expiration": the MySQL zero date and the literal
``Never``.
"""

from datetime import UTC, datetime

from dateutil.relativedelta import relativedelta

REMOTE_DATETIME_FORMAT = "%Y-%m-%d %H:%M:%S"
ZERO_DATE = "0000-00-00 00:00:00"
NEVER = "Never"

_PERIOD_UNITS = {
    "day": "days",
    "days": "days",
    "week": "weeks",
    "weeks": "weeks",
    "month": "months",
    "months": "months",
    "year": "years",
    "years": "years",
}


class ExpirationError(ValueError):
    """Raised when an expiration cannot be computed from the given inputs."""


def utcnow() -> datetime:
    return datetime.now(UTC)


def parse_remote_datetime(value: str | datetime | None) -> datetime | None:
    """Parse a MemberPress datetime (or ISO 8601) into an aware UTC datetime."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=UTC)

    text = str(value).strip()
    if not text or text in (ZERO_DATE, NEVER):
        return None
    try:
        parsed = datetime.strptime(text, REMOTE_DATETIME_FORMAT)
    except ValueError:
        try:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def format_remote_datetime(value: datetime) -> str:
    """Format a datetime the way MemberPress stores it (UTC, no offset)."""
    if value.tzinfo is not None:
        value = value.astimezone(UTC)
    return value.strftime(REMOTE_DATETIME_FORMAT)


def from_period_end(period_end: int | float) -> datetime:
    """
    Convert a billing-period-end epoch timestamp into a UTC datetime.

    Raises:
        ExpirationError: When the timestamp is outside the representable range
    """
    try:
        return datetime.fromtimestamp(int(period_end), tz=UTC)
    except (OverflowError, OSError, ValueError):
        raise ExpirationError(f"Billing period end out of range: {period_end!r}")


def default_expiration(
    created_at: datetime | str,
    period_unit: str,
    period_count: int,
) -> datetime:
    """
    ``created_at`` plus ``period_count`` calendar units.

    Month and year steps keep the day of month and clamp to the last day when
    the target month is shorter (Jan 31 + 1 month = Feb 28/29), the same as the
    "Default" expiration button in the MemberPress transaction editor.

    Raises:
        ExpirationError: For unparseable dates or unsupported units
    """
    start = parse_remote_datetime(created_at)
    if start is None:
        raise ExpirationError(f"Invalid created_at: {created_at!r}")

    unit = _PERIOD_UNITS.get(str(period_unit or "").strip().lower())
    if unit is None:
        raise ExpirationError(f"Unsupported period unit: {period_unit!r}")

    try:
        count = int(period_count)
    except (TypeError, ValueError):
        raise ExpirationError(f"Invalid period count: {period_count!r}")

    try:
        return start + relativedelta(**{unit: count})
    except (OverflowError, ValueError):
        raise ExpirationError(f"Expiration out of range: {count} {unit} after {start}")


def is_valid_expiration(expires_at: str | datetime | None, now: datetime | None = None) -> bool:
    """
    True when ``expires_at`` is a real instant strictly in the future.

    Missing values, the zero date, ``Never``, unparseable strings and instants
    at or before ``now`` are all invalid.
    """
    if expires_at is None:
        return False
    if isinstance(expires_at, str) and expires_at.strip() in ("", ZERO_DATE, NEVER):
        return False
    parsed = parse_remote_datetime(expires_at)
    if parsed is None:
        return False
    return parsed > (now or utcnow())
