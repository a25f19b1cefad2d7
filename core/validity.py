"""
validity.py
------------
Heuristic estimate of whether a subscription is still live.

There is no authoritative renewal confirmation, only the payments that
were observed. The decision uses recency of the last payment and the
accumulated confidence score. Rules are evaluated in order and the first
match wins:

    STALE                   last payment older than stale_after_days  -> invalid
    RECURRING_RECENT        >1 payment, recurring, within recurring_max_days -> valid
    SINGLE_HIGH_CONFIDENCE  1 payment, high confidence, within single_payment_max_days -> valid
    VERY_RECENT             within recent_max_days, decent confidence -> valid
    INSUFFICIENT            anything else -> invalid

A record with no payment counts as no_payment_days old.
"""

from datetime import datetime
from typing import Any, Dict

from config.config_loader import get_validity_rules


def days_between(now: datetime, then: datetime) -> int:
    """Whole days from `then` to `now`, floored."""
    if (now.tzinfo is None) != (then.tzinfo is None):
        now, then = now.replace(tzinfo=None), then.replace(tzinfo=None)
    return (now - then).days


class ValidityEstimator:
    """
    Applies the validity rules to a subscription record.

    Usage:
        estimator = ValidityEstimator()
        estimator.is_likely_valid(record)
    """

    def __init__(self, config: Dict[str, Any] | None = None):
        self.config = config if config is not None else get_validity_rules()

    def days_since_last_payment(self, record, now: datetime | None = None) -> int:
        if record.last_payment_date is None:
            return self.config["no_payment_days"]
        return days_between(now or datetime.now(), record.last_payment_date)

    def explain(self, record, now: datetime | None = None) -> tuple[bool, str]:
        """
        Returns (is_valid, rule_name) for the first matching rule.
        """
        c = self.config
        days = self.days_since_last_payment(record, now)

        if days > c["stale_after_days"]:
            return (False, "STALE")

        if record.payment_count > 1 and record.is_recurring and days <= c["recurring_max_days"]:
            return (True, "RECURRING_RECENT")

        if (
            record.payment_count == 1
            and record.confidence_score >= c["single_payment_min_confidence"]
            and days <= c["single_payment_max_days"]
        ):
            return (True, "SINGLE_HIGH_CONFIDENCE")

        if days <= c["recent_max_days"] and record.confidence_score >= c["recent_min_confidence"]:
            return (True, "VERY_RECENT")

        return (False, "INSUFFICIENT")

    def is_likely_valid(self, record, now: datetime | None = None) -> bool:
        return self.explain(record, now)[0]
