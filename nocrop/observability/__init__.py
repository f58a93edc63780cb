"""Job statistics."""
from nocrop.observability.job_metrics import JobMetricsSink

__all__ = ["JobMetricsSink"]
