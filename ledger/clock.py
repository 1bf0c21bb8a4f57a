"""Calendar date source for the mill.

All ledger dates are calendar dates in the mill's local timezone. Tests and
external collaborators can pin "today" with :func:`set_today_provider`.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Callable, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from flask import current_app, has_app_context

DEFAULT_TIMEZONE = "Asia/Kolkata"

_today_provider: Optional[Callable[[], date]] = None


def _mill_zone() -> ZoneInfo:
    name = DEFAULT_TIMEZONE
    if has_app_context():
        name = current_app.config.get("MILL_TIMEZONE") or DEFAULT_TIMEZONE
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        return ZoneInfo(DEFAULT_TIMEZONE)


def set_today_provider(provider: Optional[Callable[[], date]]) -> None:
    global _today_provider
    _today_provider = provider


def today() -> date:
    if _today_provider is not None:
        return _today_provider()
    return datetime.now(_mill_zone()).date()


def future_dates_allowed() -> bool:
    if has_app_context():
        return bool(current_app.config.get("ALLOW_FUTURE_DATES", False))
    return False
