"""
renewal.py
-----------
Next renewal date calculation from a day-of-month billing anchor.

A renewal day that does not exist in the target month (31 in April,
30 in February, ...) is clamped to that month's last day.
"""

import calendar
from datetime import datetime

from core.models import SubscriptionValidationError


def _clamped(year: int, month: int, renewal_day: int) -> datetime:
    last_day = calendar.monthrange(year, month)[1]
    return datetime(year, month, min(renewal_day, last_day))


def calculate_next_renewal(renewal_day: int, now: datetime | None = None) -> datetime:
    """
    Returns the next renewal (at midnight) strictly after `now`.

    Args:
        renewal_day: Billing day of month, 1–31.
        now: Reference time. Defaults to datetime.now().

    Raises:
        SubscriptionValidationError: If renewal_day is outside 1–31.
    """
    if not 1 <= renewal_day <= 31:
        raise SubscriptionValidationError([f"renewal_day must be between 1 and 31, got {renewal_day}"])

    if now is None:
        now = datetime.now()
    # Compare naive midnights against the wall-clock time of `now`.
    reference = now.replace(tzinfo=None)

    candidate = _clamped(reference.year, reference.month, renewal_day)
    if candidate <= reference:
        year = reference.year + reference.month // 12
        month = reference.month % 12 + 1
        candidate = _clamped(year, month, renewal_day)

    return candidate
