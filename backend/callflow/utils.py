"""Shared helpers: phone number variants and timestamps."""

import re
from datetime import datetime, timezone
from typing import List, Optional

UNKNOWN_PHONE = "unknown"
PLACEHOLDER_PHONES = {"", UNKNOWN_PHONE, "+10000000000"}


def digits_only(value: str) -> str:
    return re.sub(r"\D", "", value or "")


def is_valid_phone(value: Optional[str]) -> bool:
    """A caller number is usable for matching when it is not the sentinel and long enough."""
    return bool(value) and value != UNKNOWN_PHONE and len(value) > 5


def is_placeholder_phone(value: Optional[str]) -> bool:
    return (value or "").strip() in PLACEHOLDER_PHONES


def caller_phone_variants(phone: str) -> List[str]:
    """Formats a stored lead phone may use for the same caller.

    >>> caller_phone_variants("5551234567")
    ['5551234567', '+5551234567', '+15551234567']
    """
    digits = digits_only(phone)
    variants = [phone, f"+{digits}", f"+1{digits[-10:]}", digits[-10:]]
    return _dedupe(variants)


def agency_phone_variants(phone: str) -> List[str]:
    """Formats an agency phone number may be registered under (with/without +1)."""
    bare = re.sub(r"^\+?1?", "", phone)
    variants = [phone, re.sub(r"^\+1", "", phone), re.sub(r"^\+", "", phone), f"+1{bare}"]
    return _dedupe(variants)


def _dedupe(values: List[str]) -> List[str]:
    seen = []
    for v in values:
        if v and v not in seen:
            seen.append(v)
    return seen


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(dt: datetime) -> str:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat()


def parse_iso(value) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    try:
        dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)
