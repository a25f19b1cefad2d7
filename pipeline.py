"""
pipeline.py
------------
Batch orchestration layer. Wires together:
    1. Record construction   →  one SubscriptionRecord per subscriptions row
    2. Payment replay        →  payments applied through add_payment()
    3. Output serialization  →  flat, one-row-per-subscription DataFrame

This is the single entry point for analyzing a portfolio of subscriptions.
Everything else is internal machinery.

Usage:
    from pipeline import SubscriptionPipeline

    pipeline = SubscriptionPipeline()
    results_df = pipeline.run(subscriptions_df, payments_df)
"""

import logging
from datetime import datetime
from typing import Dict, List, Tuple

import pandas as pd

from core.models import to_datetime
from core.payment_analyzer import PaymentConsistencyAnalyzer
from core.subscription import SubscriptionRecord
from core.validity import ValidityEstimator
from config.config_loader import load_config

logger = logging.getLogger(__name__)

SUBSCRIPTION_COLUMNS = ["user_id", "service_name", "amount", "currency", "renewal_day"]
PAYMENT_COLUMNS = ["user_id", "service_name", "amount"]

OUTPUT_COLUMNS = [
    "user_id", "service_name", "category", "amount", "currency",
    "renewal_day", "next_renewal", "is_active", "is_likely_valid",
    "validity_rule", "days_since_last_payment", "payment_count",
    "last_payment_date", "is_recurring", "has_consistent_renewal_date",
    "is_consistent", "average_interval", "has_monthly_pattern",
    "confidence_score", "cancellation_date", "cancellation_reason",
]


def _require_columns(df: pd.DataFrame, required: List[str]) -> None:
    missing = [c for c in required if c not in df.columns]
    if missing:
        raise ValueError(f"Missing required columns: {missing}")


def _present(row: pd.Series, column: str):
    """Row value, or None for a missing column / NaN cell."""
    value = row.get(column)
    if value is None or (not isinstance(value, (list, dict)) and pd.isna(value)):
        return None
    return value


TRUE_STRINGS = {"true", "t", "yes", "y", "1"}


def _flag(row: pd.Series, column: str) -> bool:
    """Boolean cell. Strings only count as true when they spell it ("true", "yes", "1")."""
    value = _present(row, column)
    if value is None:
        return False
    if isinstance(value, str):
        return value.strip().lower() in TRUE_STRINGS
    return bool(value)


class SubscriptionPipeline:
    """
    End-to-end subscription analysis pipeline.

    Orchestrates record building → payment replay → output without exposing
    internal objects to callers.
    """

    def __init__(self, now: datetime | None = None):
        """
        Args:
            now: Reference time for renewals, defaults and validity. Defaults
                to the time of each call.
        """
        self.config = load_config()
        self.now = now
        self.analyzer = PaymentConsistencyAnalyzer()
        self.estimator = ValidityEstimator()
        self.orphan_payments = 0

        logger.info(
            f"Pipeline initialized. "
            f"Default currency: {self.config['subscription_defaults']['default_currency']}. "
            f"Monthly window: {self.analyzer.monthly_min_days}–{self.analyzer.monthly_max_days} days."
        )

    # -------------------------------------------------------------------------
    # PUBLIC INTERFACE
    # -------------------------------------------------------------------------

    def run(self, subscriptions: pd.DataFrame, payments: pd.DataFrame | None = None) -> pd.DataFrame:
        """
        Run the full analysis pipeline.

        Args:
            subscriptions: DataFrame with columns user_id, service_name,
                amount, currency, renewal_day; optionally category,
                description, detected_from_email, cancelled,
                cancellation_reason.
            payments: DataFrame with columns user_id, service_name, amount;
                optionally date, currency, subject, confidence. Applied in
                row order.

        Returns:
            DataFrame with one row per subscription.
        """
        now = self._now()
        logger.info(f"Pipeline starting. Input: {len(subscriptions):,} subscriptions.")

        # --- Stage 1 & 2: Build records and replay payments ---
        records = self.build_records(subscriptions, payments)
        logger.info(f"Stage 1-2 complete. Records: {len(records):,}.")

        # --- Stage 3: Serialize to DataFrame ---
        output_df = self.serialize_records(records, now)
        logger.info(f"Pipeline complete. Output rows: {len(output_df):,}.")

        return output_df

    def build_records(
        self, subscriptions: pd.DataFrame, payments: pd.DataFrame | None = None
    ) -> List[SubscriptionRecord]:
        """
        Builds records and replays payments. Useful when the caller wants the
        records themselves (e.g. for monitoring or persistence).
        """
        _require_columns(subscriptions, SUBSCRIPTION_COLUMNS)
        now = self._now()

        index: Dict[Tuple[str, str], SubscriptionRecord] = {}
        for _, row in subscriptions.iterrows():
            record = self._build_record(row, now)
            index[(str(record.user_id), record.service_name)] = record

        if payments is not None and not payments.empty:
            self._replay_payments(index, payments, now)

        # Cancellations are applied after replay so history stays complete.
        if "cancelled" in subscriptions.columns:
            for _, row in subscriptions.iterrows():
                if _flag(row, "cancelled"):
                    key = (str(row["user_id"]), str(row["service_name"]).strip())
                    index[key].cancel_subscription(_present(row, "cancellation_reason"), now=now)

        return list(index.values())

    # -------------------------------------------------------------------------
    # INTERNAL: RECORDS & PAYMENTS
    # -------------------------------------------------------------------------

    def _now(self) -> datetime:
        return self.now or datetime.now()

    def _build_record(self, row: pd.Series, now: datetime) -> SubscriptionRecord:
        return SubscriptionRecord(
            user_id=str(row["user_id"]),
            service_name=str(row["service_name"]),
            amount=float(row["amount"]),
            currency=str(row["currency"]),
            renewal_day=int(row["renewal_day"]),
            category=_present(row, "category"),
            description=_present(row, "description") or "",
            detected_from_email=_flag(row, "detected_from_email"),
            now=now,
            analyzer=self.analyzer,
            estimator=self.estimator,
        )

    def _replay_payments(
        self, index: Dict[Tuple[str, str], SubscriptionRecord], payments: pd.DataFrame, now: datetime
    ) -> None:
        """Applies each payment row to its record, in row order."""
        _require_columns(payments, PAYMENT_COLUMNS)
        self.orphan_payments = 0

        for _, row in payments.iterrows():
            key = (str(row["user_id"]), str(row["service_name"]).strip())
            record = index.get(key)
            if record is None:
                self.orphan_payments += 1
                continue

            record.add_payment(
                {
                    "date": to_datetime(_present(row, "date")),
                    "amount": float(row["amount"]),
                    "currency": _present(row, "currency"),
                    "subject": _present(row, "subject"),
                    "confidence": _present(row, "confidence"),
                },
                now=now,
            )

        if self.orphan_payments:
            logger.warning(f"{self.orphan_payments:,} payments had no matching subscription and were skipped.")

    # -------------------------------------------------------------------------
    # INTERNAL: OUTPUT SERIALIZATION
    # -------------------------------------------------------------------------

    def serialize_records(self, records: List[SubscriptionRecord], now: datetime | None = None) -> pd.DataFrame:
        """
        Converts records to a flat DataFrame, one row per subscription.
        """
        if not records:
            return pd.DataFrame(columns=OUTPUT_COLUMNS)

        now = now or self._now()
        rows = []
        for r in records:
            analysis = r.analyze_payment_consistency()
            is_valid, rule = self.estimator.explain(r, now)
            rows.append({
                "user_id": r.user_id,
                "service_name": r.service_name,
                "category": r.category,
                "amount": r.amount,
                "currency": r.currency,
                "renewal_day": r.renewal_day,
                "next_renewal": r.next_renewal.strftime("%Y-%m-%d") if r.next_renewal else None,
                "is_active": r.is_active,
                "is_likely_valid": is_valid,
                "validity_rule": rule,
                "days_since_last_payment": self.estimator.days_since_last_payment(r, now),
                "payment_count": r.payment_count,
                "last_payment_date": r.last_payment_date.strftime("%Y-%m-%d") if r.last_payment_date else None,
                "is_recurring": r.is_recurring,
                "has_consistent_renewal_date": r.has_consistent_renewal_date,
                "is_consistent": analysis.is_consistent,
                "average_interval": round(analysis.average_interval, 2),
                "has_monthly_pattern": analysis.has_monthly_pattern,
                "confidence_score": r.confidence_score,
                "cancellation_date": r.cancellation_date.strftime("%Y-%m-%d") if r.cancellation_date else None,
                "cancellation_reason": r.cancellation_reason,
            })

        df = pd.DataFrame(rows, columns=OUTPUT_COLUMNS)

        # Sort: user → service
        df = df.sort_values(["user_id", "service_name"]).reset_index(drop=True)

        return df
