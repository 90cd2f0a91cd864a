"""Prometheus metrics for shopwatch."""

import time

from prometheus_client import Counter, Gauge, Info

# Application info
app_info = Info("shopwatch", "Shopwatch application info")
app_info.info({"version": "0.1.0", "name": "shopwatch"})

# Scheduler metrics
scheduler_runs_total = Counter(
    "scheduler_runs_total",
    "Total number of scheduler tick runs",
    ["job_type", "status"],
)

scheduler_last_run_timestamp = Gauge(
    "scheduler_last_run_timestamp",
    "Timestamp of last scheduler tick",
    ["job_type"],
)

user_scans_skipped_total = Counter(
    "user_scans_skipped_total",
    "User scans skipped because another scan held the user's lock",
)

# Catalog cache metrics
catalog_cache_requests_total = Counter(
    "catalog_cache_requests_total",
    "Catalog cache lookups by outcome",
    ["outcome"],  # hit, miss, joined, stale
)

catalog_cache_entries = Gauge(
    "catalog_cache_entries",
    "Number of entries currently held by the catalog cache",
)

# Monitor metrics
monitors_tracked = Gauge(
    "monitors_tracked",
    "Number of monitors seen by the last scan tick",
)

stock_transitions_total = Counter(
    "stock_transitions_total",
    "Stock transitions detected by the scan engine",
    ["direction"],  # restock, out_of_stock
)

# Purchase metrics
purchases_total = Counter(
    "purchases_total",
    "Purchase attempts by trigger and outcome",
    ["trigger", "outcome"],  # outcome: success, rejected, low_balance, transport_error
)

# Notification metrics
notifications_total = Counter(
    "notifications_total",
    "Notifications by kind and delivery status",
    ["kind", "status"],
)


def record_scheduler_run(job_type: str, success: bool):
    """Record a scheduler tick run."""
    status = "success" if success else "error"
    scheduler_runs_total.labels(job_type=job_type, status=status).inc()
    scheduler_last_run_timestamp.labels(job_type=job_type).set(time.time())


def record_scheduler_skip(job_type: str):
    """Record a tick skipped because the previous one is still running."""
    scheduler_runs_total.labels(job_type=job_type, status="skipped").inc()


def record_user_scan_skipped():
    """Record a per-user scan skipped by the processing lock."""
    user_scans_skipped_total.inc()


def record_cache_lookup(outcome: str, size: int | None = None):
    """Record a catalog cache lookup."""
    catalog_cache_requests_total.labels(outcome=outcome).inc()
    if size is not None:
        catalog_cache_entries.set(size)


def update_cache_size(size: int):
    """Update the catalog cache size gauge."""
    catalog_cache_entries.set(size)


def record_stock_transition(direction: str):
    """Record a restock or out-of-stock transition."""
    stock_transitions_total.labels(direction=direction).inc()


def record_purchase(trigger: str, outcome: str):
    """Record a purchase attempt."""
    purchases_total.labels(trigger=trigger, outcome=outcome).inc()


def record_notification(kind: str, success: bool):
    """Record a notification delivery attempt."""
    status = "success" if success else "error"
    notifications_total.labels(kind=kind, status=status).inc()


def record_decryption_failure(exception_type: str):
    """Record a credential decryption failure."""
    decryption_failures_total.labels(exception_type=exception_type).inc()


decryption_failures_total = Counter(
    "decryption_failures_total",
    "Credential decryption failures",
    ["exception_type"],
)
