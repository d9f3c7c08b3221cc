"""Prometheus metrics for the JunkTrunk backend."""

from prometheus_client import Counter, Histogram, Info

# Application info
app_info = Info("junktrunk", "JunkTrunk backend application info")
app_info.info({"version": "0.1.0", "name": "junktrunk"})

# Source lookup metrics
source_lookups_total = Counter(
    "source_lookups_total",
    "Total number of external product source lookups",
    ["source", "outcome"],
)

source_lookup_duration_seconds = Histogram(
    "source_lookup_duration_seconds",
    "Time spent in one external product source lookup",
    ["source"],
    buckets=[0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0, 15.0],
)

# Scan metrics
scans_total = Counter(
    "scans_total",
    "Total number of barcode scans by outcome",
    ["outcome"],
)

resolutions_total = Counter(
    "resolutions_total",
    "Total number of pipeline resolutions",
    ["status"],
)

history_image_backfills_total = Counter(
    "history_image_backfills_total",
    "Images looked up while listing scan history",
    ["status"],
)


def record_source_lookup(source: str, outcome: str, duration: float):
    """Record one source lookup (outcome: found, not_found, error, timeout)."""
    source_lookups_total.labels(source=source, outcome=outcome).inc()
    source_lookup_duration_seconds.labels(source=source).observe(duration)


def record_resolution(found: bool):
    """Record the final result of a pipeline run."""
    resolutions_total.labels(status="found" if found else "not_found").inc()


def record_scan(outcome: str):
    """Record a scan (outcome: existing, created, not_found)."""
    scans_total.labels(outcome=outcome).inc()


def record_history_backfill(success: bool):
    """Record a history image backfill attempt."""
    status = "success" if success else "miss"
    history_image_backfills_total.labels(status=status).inc()
