"""
payment_analyzer.py
--------------------
Payment consistency analysis over a single subscription's payment history.

It only answers one question:

    "Do these payments look like the same monthly charge?"

Two independent signals come back together in a PaymentConsistency:
    - has_monthly_pattern: mean gap between consecutive payments falls in the
      monthly window (inclusive).
    - is_consistent: every amount is within the tolerance of the mean amount.

Design decisions:
    - Pure function of the history. The input list is never reordered.
    - Sorting is stable, so equal timestamps keep insertion order. Equal
      timestamps produce zero-day gaps which pull the mean down; they are
      not special-cased.
    - Gaps are fractional days, not whole calendar days.
    - All thresholds are read from config.yaml.
"""

from typing import Any, Dict, Sequence

import numpy as np
import pandas as pd

from core.models import PaymentConsistency, PaymentEvent
from config.config_loader import get_payment_analysis_config


class PaymentConsistencyAnalyzer:
    """
    Detects recurring payment patterns in a payment history.

    Usage:
        analyzer = PaymentConsistencyAnalyzer()
        result = analyzer.analyze(record.payment_history)
    """

    def __init__(self, config: Dict[str, Any] | None = None):
        self.config = config if config is not None else get_payment_analysis_config()
        self.min_payments = self.config["min_payments"]
        self.monthly_min_days = self.config["monthly_min_interval_days"]
        self.monthly_max_days = self.config["monthly_max_interval_days"]
        self.amount_tolerance = self.config["amount_tolerance"]

    # -------------------------------------------------------------------------
    # PUBLIC INTERFACE
    # -------------------------------------------------------------------------

    def analyze(self, payments: Sequence[PaymentEvent]) -> PaymentConsistency:
        """
        Run consistency analysis on a payment history.

        Args:
            payments: Payment events in any order.

        Returns:
            PaymentConsistency. With fewer than min_payments events the
            result is (False, 0, False) and carries no payment_count.
        """
        if len(payments) < self.min_payments:
            return PaymentConsistency(
                is_consistent=False,
                average_interval=0,
                has_monthly_pattern=False,
            )

        df = self._prepare(payments)

        average_interval = self._average_interval(df)
        has_monthly_pattern = self.monthly_min_days <= average_interval <= self.monthly_max_days
        is_consistent = self._amounts_consistent(df["amount"].to_numpy(dtype=float))

        return PaymentConsistency(
            is_consistent=is_consistent,
            average_interval=average_interval,
            has_monthly_pattern=has_monthly_pattern,
            payment_count=len(payments),
        )

    # -------------------------------------------------------------------------
    # INTERNAL: DATA PREPARATION
    # -------------------------------------------------------------------------

    def _prepare(self, payments: Sequence[PaymentEvent]) -> pd.DataFrame:
        """Builds a date-sorted frame of (date, amount). Ties keep insertion order."""
        df = pd.DataFrame({
            "date": pd.to_datetime([p.date for p in payments]),
            "amount": [p.amount for p in payments],
        })
        return df.sort_values("date", kind="stable").reset_index(drop=True)

    # -------------------------------------------------------------------------
    # INTERNAL: SIGNALS
    # -------------------------------------------------------------------------

    def _average_interval(self, df: pd.DataFrame) -> float:
        """Mean gap in days between consecutive payments."""
        gaps = df["date"].diff().dropna() / pd.Timedelta(days=1)
        return float(gaps.mean())

    def _amounts_consistent(self, amounts: np.ndarray) -> bool:
        """True if every amount is within amount_tolerance of the mean."""
        mean_amount = float(np.mean(amounts))
        return bool(np.all(np.abs(amounts - mean_amount) <= mean_amount * self.amount_tolerance))
