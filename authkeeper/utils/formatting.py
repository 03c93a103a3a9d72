"""Human-readable expiry descriptions for the accounts listing."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional

EXPIRING_SOON = timedelta(hours=24)


def _plural(count: int, unit: str) -> str:
    return f"{count} {unit}{'' if count == 1 else 's'} remaining"


def format_time_remaining(expiry: Optional[datetime], now: Optional[datetime] = None) -> str:
    if expiry is None:
        return "Unknown"
    now = now or datetime.now(timezone.utc)
    remaining = expiry - now
    if remaining.total_seconds() < 0:
        return "Expired"
    hours = int(remaining.total_seconds() // 3600)
    days = hours // 24
    if days > 0:
        return _plural(days, "day")
    if hours > 0:
        return _plural(hours, "hour")
    return _plural(int(remaining.total_seconds() // 60), "minute")


def expiry_status(expiry: Optional[datetime], now: Optional[datetime] = None) -> str:
    """One of ``Active``, ``Expiring soon`` or ``Expired``."""
    now = now or datetime.now(timezone.utc)
    if expiry is None or expiry < now:
        return "Expired"
    if expiry - now < EXPIRING_SOON:
        return "Expiring soon"
    return "Active"


def mask_token(token: str, visible: int = 20) -> str:
    if len(token) <= visible:
        return token
    return token[:visible] + "..."


__all__ = ["expiry_status", "format_time_remaining", "mask_token"]
