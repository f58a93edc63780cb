"""Per-user job queue and media-group aggregation."""

from nocrop.queue.album import AlbumAggregator
from nocrop.queue.job_queue import Job, JobContext, JobQueue

__all__ = ["AlbumAggregator", "Job", "JobContext", "JobQueue"]
