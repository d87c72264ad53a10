"""In-process metrics."""

from filerelay.observability.metrics import MetricBucket, MetricsTracker

__all__ = ["MetricBucket", "MetricsTracker"]
