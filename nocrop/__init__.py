"""No-crop image core: per-user job queue, distributed lock, album aggregation and image geometry."""

__version__ = "1.0.0"
