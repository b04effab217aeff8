"""Display helpers shared by the activity log and the dashboard API."""
import time
from typing import Optional


def format_wallet(address: Optional[str]) -> str:
    """0x1234567890abcdef -> 0x1234...cdef"""
    if not address:
        return ""
    return f"{address[:6]}...{address[-4:]}"


def time_ago(timestamp: int, now: Optional[float] = None) -> str:
    now = int(now if now is not None else time.time())
    diff = max(0, now - int(timestamp))

    if diff < 60:
        return f"{diff}s ago"
    if diff < 3600:
        return f"{diff // 60}m ago"
    if diff < 86400:
        return f"{diff // 3600}h ago"
    return f"{diff // 86400}d ago"


def format_currency(amount: float) -> str:
    if amount >= 1_000_000:
        return f"${amount / 1_000_000:.2f}M"
    if amount >= 1_000:
        return f"${amount / 1_000:.1f}k"
    return f"${amount:.0f}"
