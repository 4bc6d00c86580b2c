import uuid
from datetime import datetime, timedelta, UTC
from typing import Optional, Tuple


def make_id(prefix: str) -> str:
    """Generate a unique ID with a given prefix."""
    return f"{prefix}_{uuid.uuid4()}"


def time_now() -> str:
    """Return the current time in ISO format (UTC, no microseconds)."""
    return datetime.now(UTC).replace(microsecond=0).isoformat()


def time_after(hours: float) -> str:
    """Return the ISO timestamp ``hours`` from now (UTC, no microseconds)."""
    return (datetime.now(UTC) + timedelta(hours=hours)).replace(microsecond=0).isoformat()


def mask_email(email: Optional[str]) -> str:
    """Mask an email address for log output: ``alice@example.com`` -> ``a***@example.com``."""
    if not email or "@" not in email:
        return "***"
    local, _, domain = email.partition("@")
    return f"{local[:1]}***@{domain}"


def clamp_page(page: Optional[int], limit: Optional[int], default_limit: int, max_limit: int) -> Tuple[int, int]:
    """Normalise 1-indexed pagination input.

    Pages below 1 become 1; a missing limit uses ``default_limit`` and any
    limit is clamped to ``[1, max_limit]``.
    """
    page = page if page and page > 0 else 1
    if limit is None:
        limit = default_limit
    limit = max(1, min(limit, max_limit))
    return page, limit


def blank(value) -> bool:
    """True for None and for strings that are empty once stripped."""
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    return False
