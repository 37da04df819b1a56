"""
Prometheus metrics for monitoring the sync pipeline.

Defines and exposes metrics for:
- Sync pass outcomes and latency
- Post changes (created, updated, unpublished, republished)
- Asset store actions (created, reused, deduplicated, renamed)
- External service errors and rate limiting

Metrics live in the default prometheus_client registry.
"""

import logging

from prometheus_client import Counter, Histogram

logger = logging.getLogger(__name__)

# Sync passes are dominated by deliberate inter-note delays
SYNC_LATENCY_BUCKETS = (1.0, 5.0, 15.0, 30.0, 60.0, 120.0, 300.0, 600.0)


class MetricsCollector:
    """
    Prometheus metrics collector for the notepress sync pipeline.

    Usage:
        metrics = get_metrics()
        metrics.record_sync_pass(source="note", status="succeeded", latency=12.5)
        metrics.record_asset_action("renamed")
    """

    def __init__(self):
        """Initialize Prometheus metrics."""

        self.sync_passes = Counter(
            "notepress_sync_passes_total",
            "Total sync passes",
            ["source", "status"],  # status: succeeded, failed, skipped, aborted
        )

        self.sync_latency = Histogram(
            "notepress_sync_latency_seconds",
            "Wall time of one sync pass",
            ["source"],
            buckets=SYNC_LATENCY_BUCKETS,
        )

        self.post_changes = Counter(
            "notepress_post_changes_total",
            "Post changes applied by sync passes",
            ["source", "action"],  # created, updated, unpublished, republished
        )

        self.item_failures = Counter(
            "notepress_sync_item_failures_total",
            "Per-item failures during sync passes",
            ["source", "error_type"],
        )

        self.assets = Counter(
            "notepress_assets_total",
            "Asset store operations",
            ["action"],  # created, reused, deduplicated, renamed
        )

        self.external_errors = Counter(
            "notepress_external_errors_total",
            "Classified errors returned by external services",
            ["service", "error_type"],
        )

        self.rate_limit_waits = Histogram(
            "notepress_rate_limit_wait_seconds",
            "Rate-limit wait durations reported by external services",
            ["service"],
            buckets=(1.0, 5.0, 15.0, 30.0, 60.0, 300.0, 900.0, 3600.0),
        )

        logger.info("Prometheus metrics initialized")

    # Convenience methods

    def record_sync_pass(
        self,
        source: str,
        status: str,
        latency: float | None = None,
    ) -> None:
        """
        Record the outcome of a sync pass.

        Args:
            source: Content source (note, ghost)
            status: succeeded, failed, skipped or aborted
            latency: Optional pass duration in seconds
        """
        self.sync_passes.labels(source=source, status=status).inc()
        if latency is not None:
            self.sync_latency.labels(source=source).observe(latency)

    def record_post_change(self, source: str, action: str, count: int = 1) -> None:
        """Record post changes of one kind."""
        if count > 0:
            self.post_changes.labels(source=source, action=action).inc(count)

    def record_item_failure(self, source: str, error_type: str) -> None:
        """Record a per-item failure."""
        self.item_failures.labels(source=source, error_type=error_type).inc()

    def record_asset_action(self, action: str) -> None:
        """Record an asset store action."""
        self.assets.labels(action=action).inc()

    def record_external_error(
        self,
        service: str,
        error_type: str,
        retry_after: float | None = None,
    ) -> None:
        """
        Record a classified external service error.

        Args:
            service: Host or logical service name
            error_type: Classified error name
            retry_after: Rate-limit wait in seconds, when reported
        """
        self.external_errors.labels(service=service, error_type=error_type).inc()
        if retry_after is not None:
            self.rate_limit_waits.labels(service=service).observe(retry_after)


# Global metrics instance
_metrics: MetricsCollector | None = None


def get_metrics() -> MetricsCollector:
    """Get global metrics collector instance."""
    global _metrics
    if _metrics is None:
        _metrics = MetricsCollector()
    return _metrics
