"""
renewal_monitor.py
-------------------
Portfolio monitoring over analyzed subscription records.

Implements three monitoring dimensions:
    1. Stale subscriptions: records still marked active whose payment
       evidence no longer supports them (is_likely_valid() is False).
    2. Upcoming renewals: active records renewing within the look-ahead
       window.
    3. Price changes: the latest observed payment differs from the listed
       subscription amount by more than the tolerance.

The summary also reports monthly spend per currency across active,
likely-valid subscriptions.

All thresholds and window sizes come from config.yaml.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Iterable, List

import pandas as pd

from core.subscription import SubscriptionRecord
from config.config_loader import get_renewal_monitoring_config


@dataclass
class MonitorAlert:
    """A single monitoring alert."""
    alert_type: str                  # "STALE_SUBSCRIPTION" | "UPCOMING_RENEWAL" | "PRICE_CHANGE"
    severity: str                    # "INFO" | "WARNING" | "CRITICAL"
    user_id: str
    service_name: str
    metric_name: str                 # e.g. "days_since_last_payment", "days_until_renewal"
    metric_value: float
    threshold: float
    message: str
    detected_at: str = ""            # ISO timestamp


@dataclass
class MonitorReport:
    """Full monitoring report, one per run."""
    run_timestamp: str
    alerts: List[MonitorAlert] = field(default_factory=list)
    summary: dict = field(default_factory=dict)

    def to_frame(self) -> pd.DataFrame:
        columns = [
            "alert_type", "severity", "user_id", "service_name",
            "metric_name", "metric_value", "threshold", "message", "detected_at",
        ]
        return pd.DataFrame([vars(a) for a in self.alerts], columns=columns)


class RenewalMonitor:
    """
    Monitors a portfolio of subscription records.

    Usage:
        monitor = RenewalMonitor()
        report = monitor.run(records)
    """

    def __init__(self, now: datetime | None = None):
        self.config = get_renewal_monitoring_config()
        self.upcoming_days = self.config["upcoming_renewal_days"]
        self.price_tolerance = self.config["price_change_tolerance"]
        self.now = now

    # -------------------------------------------------------------------------
    # PUBLIC INTERFACE
    # -------------------------------------------------------------------------

    def run(self, records: Iterable[SubscriptionRecord]) -> MonitorReport:
        """
        Run the full monitoring suite.

        Args:
            records: Analyzed subscription records (e.g. from
                SubscriptionPipeline.build_records()).

        Returns:
            MonitorReport with all alerts and summary metrics.
        """
        now = self.now or datetime.now()
        records = list(records)

        alerts: List[MonitorAlert] = []
        for record in records:
            if not record.is_active:
                continue
            alerts.extend(self._check_stale(record, now))
            alerts.extend(self._check_upcoming_renewal(record, now))
            alerts.extend(self._check_price_change(record, now))

        # --- Summary ---
        summary = {
            "total_records": len(records),
            "active_records": sum(1 for r in records if r.is_active),
            "total_alerts": len(alerts),
            "critical_alerts": sum(1 for a in alerts if a.severity == "CRITICAL"),
            "warning_alerts": sum(1 for a in alerts if a.severity == "WARNING"),
            "info_alerts": sum(1 for a in alerts if a.severity == "INFO"),
            "monthly_spend": self._monthly_spend(records, now),
        }

        return MonitorReport(run_timestamp=now.isoformat(), alerts=alerts, summary=summary)

    # -------------------------------------------------------------------------
    # INTERNAL: CHECKS
    # -------------------------------------------------------------------------

    def _check_stale(self, record: SubscriptionRecord, now: datetime) -> List[MonitorAlert]:
        """Active record that the payment evidence no longer supports."""
        if record.is_likely_valid(now):
            return []

        days = record.days_since_last_payment(now)
        stale_after = record.estimator.config["stale_after_days"]
        never_paid = record.last_payment_date is None
        severity = "CRITICAL" if (never_paid and record.detected_from_email) else "WARNING"

        if never_paid:
            message = f"No payment has ever been observed for {record.service_name}."
        else:
            message = (
                f"{record.service_name} is marked active but the last payment was "
                f"{days} days ago ({record.payment_count} payments, "
                f"confidence {record.confidence_score})."
            )

        return [MonitorAlert(
            alert_type="STALE_SUBSCRIPTION",
            severity=severity,
            user_id=record.user_id,
            service_name=record.service_name,
            metric_name="days_since_last_payment",
            metric_value=float(days),
            threshold=float(stale_after),
            message=message,
            detected_at=now.isoformat(),
        )]

    def _check_upcoming_renewal(self, record: SubscriptionRecord, now: datetime) -> List[MonitorAlert]:
        if record.next_renewal is None:
            return []

        reference = now.replace(tzinfo=None)
        if record.next_renewal > reference + timedelta(days=self.upcoming_days):
            return []

        days_until = max((record.next_renewal - reference).days, 0)
        return [MonitorAlert(
            alert_type="UPCOMING_RENEWAL",
            severity="INFO",
            user_id=record.user_id,
            service_name=record.service_name,
            metric_name="days_until_renewal",
            metric_value=float(days_until),
            threshold=float(self.upcoming_days),
            message=(
                f"{record.service_name} renews on {record.next_renewal.date()} "
                f"({record.amount:.2f} {record.currency})."
            ),
            detected_at=now.isoformat(),
        )]

    def _check_price_change(self, record: SubscriptionRecord, now: datetime) -> List[MonitorAlert]:
        """Latest payment vs. the listed amount, same currency only."""
        if not record.payment_history or not record.amount:
            return []

        latest = max(record.payment_history, key=lambda p: pd.Timestamp(p.date))
        if latest.currency != record.currency:
            return []

        change = (latest.amount - record.amount) / record.amount
        if abs(change) <= self.price_tolerance:
            return []

        return [MonitorAlert(
            alert_type="PRICE_CHANGE",
            severity="WARNING",
            user_id=record.user_id,
            service_name=record.service_name,
            metric_name="price_change_ratio",
            metric_value=round(change, 4),
            threshold=self.price_tolerance,
            message=(
                f"{record.service_name} charged {latest.amount:.2f} {latest.currency} "
                f"vs. listed {record.amount:.2f} ({change * 100:+.0f}%)."
            ),
            detected_at=now.isoformat(),
        )]

    # -------------------------------------------------------------------------
    # INTERNAL: SPEND
    # -------------------------------------------------------------------------

    def _monthly_spend(self, records: List[SubscriptionRecord], now: datetime) -> dict:
        """Sum of listed amounts per currency over active, likely-valid records."""
        rows = [
            {"currency": r.currency, "amount": r.amount}
            for r in records
            if r.is_active and r.is_likely_valid(now)
        ]
        if not rows:
            return {}
        spend = pd.DataFrame(rows).groupby("currency")["amount"].sum().round(2)
        return {str(k): float(v) for k, v in spend.items()}
