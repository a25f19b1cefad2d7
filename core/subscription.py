"""
subscription.py
----------------
The subscription record: state of one tracked subscription plus the
operations that mutate it.

- add_payment(): append-only payment recording with pattern analysis.
- cancel_subscription(): one-way active -> cancelled transition.
- is_likely_valid(): recency/confidence heuristic (core/validity.py).
- prepare_for_save(): validation and next_renewal recomputation, run by the
  caller right before persisting.

Nothing here does I/O. The caller owns persistence and is responsible for
serializing concurrent mutations of the same record.
"""

import logging
from datetime import datetime
from typing import Any, Dict, Mapping

from core.models import PaymentConsistency, PaymentEvent, SubscriptionValidationError, to_datetime
from core.payment_analyzer import PaymentConsistencyAnalyzer
from core.renewal import calculate_next_renewal
from core.taxonomy import CategoryLookup
from core.validity import ValidityEstimator
from config.config_loader import get_subscription_defaults

logger = logging.getLogger(__name__)


class SubscriptionRecord:
    """
    A user's subscription to a service, with its observed payment history.

    Invariants kept by the mutation methods:
        - payment_count == len(payment_history)
        - next_renewal is None exactly when the record is cancelled
        - is_recurring only once more than one payment was recorded
        - confidence_score never decreases through add_payment()
    """

    def __init__(
        self,
        user_id: str,
        service_name: str,
        amount: float,
        currency: str,
        renewal_day: int,
        category: str | None = None,
        description: str = "",
        detected_from_email: bool = False,
        now: datetime | None = None,
        config: Dict[str, Any] | None = None,
        analyzer: PaymentConsistencyAnalyzer | None = None,
        estimator: ValidityEstimator | None = None,
    ):
        self.config = config if config is not None else get_subscription_defaults()
        self.categories = CategoryLookup(self.config)
        self.analyzer = analyzer or PaymentConsistencyAnalyzer()
        self.estimator = estimator or ValidityEstimator()

        # Identity & billing
        self.user_id = user_id
        self.service_name = service_name.strip() if service_name else service_name
        self.amount = amount
        self.currency = currency
        self.category = self.categories.lookup(category) or category or self.categories.default_category
        self.description = description
        self.detected_from_email = detected_from_email

        # Lifecycle
        self.is_active = True
        self.cancellation_date: datetime | None = None
        self.cancellation_reason = ""

        # Payment history & derived pattern flags
        self.payment_history: list[PaymentEvent] = []
        self.last_payment_date: datetime | None = None
        self.payment_count = 0
        self.is_recurring = False
        self.has_consistent_renewal_date = False
        self.has_payment_history = False
        self.confidence_score: float = 0

        # Persistence bookkeeping
        self.created_at: datetime | None = None
        self.updated_at: datetime | None = None
        self.is_new = True
        self._renewal_day_modified = False

        self._renewal_day = renewal_day
        self.next_renewal: datetime | None = calculate_next_renewal(renewal_day, now)

    # -------------------------------------------------------------------------
    # RENEWAL SCHEDULE
    # -------------------------------------------------------------------------

    @property
    def renewal_day(self) -> int:
        return self._renewal_day

    @renewal_day.setter
    def renewal_day(self, value: int) -> None:
        self.set_renewal_day(value)

    def set_renewal_day(self, value: int, now: datetime | None = None) -> None:
        """Changes the billing anchor and recomputes next_renewal unless cancelled."""
        next_renewal = calculate_next_renewal(value, now)
        self._renewal_day = value
        self._renewal_day_modified = True
        if self.cancellation_date is None:
            self.next_renewal = next_renewal

    def calculate_next_renewal(self, now: datetime | None = None) -> datetime:
        return calculate_next_renewal(self._renewal_day, now)

    # -------------------------------------------------------------------------
    # PAYMENTS
    # -------------------------------------------------------------------------

    def add_payment(self, payment: PaymentEvent | Mapping[str, Any], now: datetime | None = None) -> PaymentEvent:
        """
        Records one payment and refreshes the derived pattern fields.

        Args:
            payment: A PaymentEvent, or a mapping shaped like
                {date?, amount, currency?, subject?, confidence?}.
            now: Used when the payment carries no date.

        Returns:
            The PaymentEvent appended to the history.
        """
        if not isinstance(payment, PaymentEvent):
            payment = PaymentEvent.from_mapping(
                payment,
                now=now or datetime.now(),
                default_currency=self.config["default_currency"],
                default_confidence=self.config["default_confidence"],
            )

        if not self.is_active:
            # No reactivation: the payment is kept as evidence only.
            logger.warning(
                f"Payment recorded for cancelled subscription "
                f"{self.service_name!r} (user {self.user_id})."
            )

        self.payment_history.append(payment)
        self.last_payment_date = payment.date
        self.payment_count = len(self.payment_history)

        if self.payment_count > 1:
            analysis = self.analyze_payment_consistency()
            self.is_recurring = True
            self.has_consistent_renewal_date = analysis.has_monthly_pattern
            self.has_payment_history = True

            if analysis.is_consistent and analysis.has_monthly_pattern:
                self._raise_confidence(self.analyzer.config["confirmed_pattern_confidence"])
                logger.debug(
                    f"Monthly pattern confirmed for {self.service_name!r}: "
                    f"avg interval {analysis.average_interval:.1f} days over {self.payment_count} payments."
                )

        return payment

    def _raise_confidence(self, floor: float) -> None:
        """The only writer of confidence_score after creation. Never lowers it."""
        self.confidence_score = max(self.confidence_score, floor)

    def analyze_payment_consistency(self) -> PaymentConsistency:
        return self.analyzer.analyze(self.payment_history)

    # -------------------------------------------------------------------------
    # VALIDITY
    # -------------------------------------------------------------------------

    def days_since_last_payment(self, now: datetime | None = None) -> int:
        return self.estimator.days_since_last_payment(self, now)

    def is_likely_valid(self, now: datetime | None = None) -> bool:
        """Heuristic: is this subscription probably still being billed?"""
        return self.estimator.is_likely_valid(self, now)

    # -------------------------------------------------------------------------
    # CANCELLATION
    # -------------------------------------------------------------------------

    def cancel_subscription(self, reason: str | None = None, now: datetime | None = None) -> None:
        """
        Marks the subscription cancelled. Re-cancelling overwrites the date
        and reason. Payment history is kept.
        """
        self.is_active = False
        self.cancellation_date = now or datetime.now()
        self.cancellation_reason = reason or self.config["default_cancellation_reason"]
        self.next_renewal = None

    # -------------------------------------------------------------------------
    # PERSISTENCE HOOKS
    # -------------------------------------------------------------------------

    def validate(self) -> None:
        """
        Checks the schema constraints of the record.

        Raises:
            SubscriptionValidationError: Listing every violated constraint.
        """
        problems = []
        if not self.user_id:
            problems.append("user_id is required")
        if not self.service_name:
            problems.append("service_name is required")
        if self.amount is None or self.amount < 0:
            problems.append(f"amount must be >= 0, got {self.amount}")
        if not self.categories.is_supported_currency(self.currency):
            problems.append(f"unsupported currency {self.currency!r}")
        if not 1 <= self._renewal_day <= 31:
            problems.append(f"renewal_day must be between 1 and 31, got {self._renewal_day}")
        if not self.categories.is_known_category(self.category):
            problems.append(f"unknown category {self.category!r}")

        if problems:
            raise SubscriptionValidationError(problems)

    def prepare_for_save(self, now: datetime | None = None) -> "SubscriptionRecord":
        """
        Validates and refreshes derived fields right before the caller
        persists the record.
        """
        self.validate()
        now = now or datetime.now()

        if self.next_renewal is None or self._renewal_day_modified or self.is_new:
            self.next_renewal = calculate_next_renewal(self._renewal_day, now)

        if self.cancellation_date is not None:
            self.next_renewal = None

        if self.created_at is None:
            self.created_at = now
        self.updated_at = now
        self.is_new = False
        self._renewal_day_modified = False
        return self

    # -------------------------------------------------------------------------
    # SERIALIZATION
    # -------------------------------------------------------------------------

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "service_name": self.service_name,
            "amount": self.amount,
            "currency": self.currency,
            "renewal_day": self._renewal_day,
            "next_renewal": self.next_renewal,
            "category": self.category,
            "description": self.description,
            "is_active": self.is_active,
            "detected_from_email": self.detected_from_email,
            "payment_history": [p.to_dict() for p in self.payment_history],
            "cancellation_date": self.cancellation_date,
            "cancellation_reason": self.cancellation_reason,
            "last_payment_date": self.last_payment_date,
            "is_recurring": self.is_recurring,
            "confidence_score": self.confidence_score,
            "has_payment_history": self.has_payment_history,
            "has_consistent_renewal_date": self.has_consistent_renewal_date,
            "payment_count": self.payment_count,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], **kwargs) -> "SubscriptionRecord":
        """
        Rebuilds a stored record. Stored derived fields are restored as-is;
        payment_count is taken from the history, and next_renewal is only
        null when the record is cancelled.
        """
        record = cls(
            user_id=data["user_id"],
            service_name=data["service_name"],
            amount=data["amount"],
            currency=data["currency"],
            renewal_day=data["renewal_day"],
            category=data.get("category"),
            description=data.get("description", ""),
            detected_from_email=data.get("detected_from_email", False),
            **kwargs,
        )

        record.payment_history = [
            PaymentEvent(
                date=to_datetime(p["date"]),
                amount=float(p["amount"]),
                currency=p["currency"],
                source_label=p.get("source_label", ""),
                confidence=float(p.get("confidence", 0)),
            )
            for p in data.get("payment_history", [])
        ]
        record.payment_count = len(record.payment_history)
        record.last_payment_date = to_datetime(data.get("last_payment_date"))
        record.is_recurring = bool(data.get("is_recurring", False))
        record.has_payment_history = bool(data.get("has_payment_history", False))
        record.has_consistent_renewal_date = bool(data.get("has_consistent_renewal_date", False))
        record.confidence_score = data.get("confidence_score", 0)

        record.is_active = bool(data.get("is_active", True))
        record.cancellation_date = to_datetime(data.get("cancellation_date"))
        record.cancellation_reason = data.get("cancellation_reason", "")
        # A stored null renewal on an active record keeps the one computed above.
        stored_renewal = to_datetime(data.get("next_renewal"))
        if stored_renewal is not None:
            record.next_renewal = stored_renewal
        if record.cancellation_date is not None:
            record.next_renewal = None

        record.created_at = to_datetime(data.get("created_at"))
        record.updated_at = to_datetime(data.get("updated_at"))
        record.is_new = record.created_at is None
        return record

    def __repr__(self) -> str:
        status = "active" if self.is_active else "cancelled"
        return (
            f"SubscriptionRecord(user={self.user_id!r}, service={self.service_name!r}, "
            f"{status}, payments={self.payment_count}, confidence={self.confidence_score})"
        )
