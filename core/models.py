"""
models.py
----------
Core domain models. These are the typed contracts between engine layers.

- PaymentEvent: One detected/recorded charge for a subscription. Usually
  produced from a payment email by an upstream detector, which also
  supplies the 0–10 confidence.

- PaymentConsistency: Output of the payment consistency analyzer. Two
  independent signals (amount consistency, monthly cadence) that callers
  compose themselves.

The stateful SubscriptionRecord lives in core/subscription.py.
"""

from dataclasses import dataclass, asdict
from datetime import date as date_type, datetime, timezone
from typing import Any, Mapping, Optional

import pandas as pd


class SubscriptionValidationError(ValueError):
    """Raised when a subscription record violates its schema constraints."""

    def __init__(self, problems: list[str]):
        self.problems = problems
        super().__init__("Invalid subscription: " + "; ".join(problems))


def to_datetime(value: Any) -> Optional[datetime]:
    """
    Coerces a date-like value (datetime, date, ISO string, Timestamp) to a
    naive datetime. Timezone-aware values are converted to UTC first, so
    every stored date compares with every other.
    """
    if value is None or value is pd.NaT:
        return None
    if isinstance(value, str):
        if not value.strip():
            return None
        value = pd.Timestamp(value)
    if isinstance(value, pd.Timestamp):
        result = value.to_pydatetime()
    elif isinstance(value, datetime):
        result = value
    elif isinstance(value, date_type):
        return datetime(value.year, value.month, value.day)
    else:
        stamp = pd.Timestamp(value)
        if pd.isna(stamp):
            return None
        result = stamp.to_pydatetime()

    if result.tzinfo is not None:
        result = result.astimezone(timezone.utc).replace(tzinfo=None)
    return result


@dataclass
class PaymentEvent:
    """A single payment observed for a subscription."""

    date: datetime
    amount: float
    currency: str
    source_label: str = ""           # e.g. the subject line of the receipt email
    confidence: float = 0.0          # Detector score, 0–10.

    def __post_init__(self):
        self.date = to_datetime(self.date)

    @classmethod
    def from_mapping(
        cls,
        data: Mapping[str, Any],
        now: datetime,
        default_currency: str,
        default_confidence: float = 0.0,
    ) -> "PaymentEvent":
        """
        Builds an event from the loose wire shape
        {date?, amount, currency?, subject?, confidence?}.

        Missing or empty values fall back to now / default_currency /
        default_confidence. "subject" and "source_label" are both accepted.
        """
        event_date = to_datetime(data.get("date")) or now
        currency = data.get("currency") or default_currency
        label = data.get("subject") or data.get("source_label") or ""
        confidence = data.get("confidence")
        if confidence is None or pd.isna(confidence):
            confidence = default_confidence

        return cls(
            date=event_date,
            amount=float(data["amount"]),
            currency=str(currency),
            source_label=str(label),
            confidence=float(confidence),
        )

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class PaymentConsistency:
    """
    Pattern analysis over a payment history.

    payment_count is None for the "not enough history" result.
    """

    is_consistent: bool
    average_interval: float          # Mean gap between consecutive payments, in days.
    has_monthly_pattern: bool
    payment_count: Optional[int] = None

    def to_dict(self) -> dict:
        result = asdict(self)
        if self.payment_count is None:
            del result["payment_count"]
        return result
