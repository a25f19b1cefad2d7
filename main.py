"""
main.py
--------
Entry point for the Subscription Tracker Engine.

Reads subscriptions and observed payments, replays the payments through
the subscription records, and writes the analysis to the outputs/ folder.

Usage (from the project root):
    python main.py

    # With optional arguments:
    python main.py --subscriptions path/to/subscriptions.csv --payments path/to/payments.csv
    python main.py --as-of 2025-06-30
    python main.py --only-valid --run-monitor
"""

import sys
import os
import argparse
import logging
import pandas as pd
from datetime import datetime

# Ensure project root is on path (for runs from any working directory)
PROJECT_ROOT = os.path.dirname(os.path.abspath(__file__))
sys.path.insert(0, PROJECT_ROOT)

from pipeline import SubscriptionPipeline
from monitoring.renewal_monitor import RenewalMonitor


# =============================================================================
# LOGGING SETUP
# =============================================================================

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("main")


# =============================================================================
# ARGUMENT PARSING
# =============================================================================

def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Subscription Tracker Engine: analyze subscription payment patterns."
    )
    parser.add_argument(
        "--subscriptions", type=str, default=None,
        help="Path to subscriptions CSV. Defaults to sample_subscriptions.csv in project root."
    )
    parser.add_argument(
        "--payments", type=str, default=None,
        help="Path to payments CSV. Defaults to sample_payments.csv in project root."
    )
    parser.add_argument(
        "--as-of", type=str, default=None,
        help="Reference date (YYYY-MM-DD) for renewals and validity. Defaults to now."
    )
    parser.add_argument(
        "--only-valid", action="store_true", default=False,
        help="Only include subscriptions that are active and likely still valid."
    )
    parser.add_argument(
        "--output-dir", type=str, default=None,
        help="Output directory. Defaults to outputs/ in project root."
    )
    parser.add_argument(
        "--run-monitor", action="store_true", default=False,
        help="Also run the renewal monitor and output an alert report."
    )
    return parser.parse_args(argv)


# =============================================================================
# MAIN
# =============================================================================

def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)

    # --- Resolve paths ---
    subscriptions_path = args.subscriptions or os.path.join(PROJECT_ROOT, "sample_subscriptions.csv")
    payments_path = args.payments or os.path.join(PROJECT_ROOT, "sample_payments.csv")
    output_dir = args.output_dir or os.path.join(PROJECT_ROOT, "outputs")
    now = datetime.strptime(args.as_of, "%Y-%m-%d") if args.as_of else datetime.now()

    # --- Load inputs ---
    for path in (subscriptions_path, payments_path):
        if not os.path.exists(path):
            logger.error(f"Input file not found: {path}")
            return 1

    os.makedirs(output_dir, exist_ok=True)
    subscriptions = pd.read_csv(subscriptions_path)
    payments = pd.read_csv(payments_path)
    logger.info(
        f"Loaded {len(subscriptions):,} subscriptions and {len(payments):,} payments "
        f"for {subscriptions['user_id'].nunique():,} users."
    )

    # --- Run pipeline ---
    pipeline = SubscriptionPipeline(now=now)
    records = pipeline.build_records(subscriptions, payments)
    results = pipeline.serialize_records(records, now)
    logger.info(f"Analyzed {len(results):,} subscriptions.")

    if args.only_valid:
        filtered = results[results["is_active"] & results["is_likely_valid"]].copy()
        logger.info(
            f"After filtering (active & likely valid): {len(filtered):,} subscriptions. "
            f"Filtered out: {len(results) - len(filtered):,}."
        )
        results = filtered

    # --- Output: Analysis ---
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    results_path = os.path.join(output_dir, f"subscriptions_{timestamp}.csv")
    results.to_csv(results_path, index=False)
    logger.info(f"Analysis saved to: {results_path}")

    # --- Print summary ---
    _print_summary(results)

    # --- Optional: Renewal Monitoring ---
    if args.run_monitor:
        logger.info("Running renewal monitor...")
        report = RenewalMonitor(now=now).run(records)

        logger.info(f"Monitor Report: {report.summary}")
        for alert in report.alerts:
            level = {"CRITICAL": logging.ERROR, "WARNING": logging.WARNING}.get(alert.severity, logging.INFO)
            logger.log(level, f"[{alert.alert_type}] {alert.severity}: {alert.message}")

        if report.alerts:
            alerts_path = os.path.join(output_dir, f"renewal_alerts_{timestamp}.csv")
            report.to_frame().to_csv(alerts_path, index=False)
            logger.info(f"Alert report saved to: {alerts_path}")
        else:
            logger.info("No renewal alerts.")

    return 0


def _print_summary(df: pd.DataFrame):
    """Prints a clean summary table to the console."""
    if df.empty:
        print("\n  No subscriptions to display.\n")
        return

    print("\n" + "=" * 80)
    print("  SUBSCRIPTION SUMMARY")
    print("=" * 80)

    # By category
    print("\n  Subscriptions by Category:")
    print("  " + "-" * 60)
    for category in sorted(df["category"].unique()):
        subset = df[df["category"] == category]
        valid = subset["is_likely_valid"].sum()
        recurring = subset["is_recurring"].sum()
        print(f"    {category:30s}  {len(subset):>5,}  (valid: {valid}, recurring: {recurring})")

    # By validity rule
    print(f"\n  Validity Mix:")
    print("  " + "-" * 60)
    for rule, count in df["validity_rule"].value_counts().items():
        pct = count / len(df) * 100
        print(f"    {rule:25s}  {count:>5,}  ({pct:.1f}%)")

    cancelled = (~df["is_active"]).sum()
    print(f"\n  Cancelled subscriptions: {cancelled:,}")
    print("=" * 80 + "\n")


if __name__ == "__main__":
    sys.exit(main())
