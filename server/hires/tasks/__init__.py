from .cleanup import cleanup_abandoned_jobs, cleanup_expired_downloads, cleanup_failed_jobs

__all__ = [
    "cleanup_abandoned_jobs",
    "cleanup_expired_downloads",
    "cleanup_failed_jobs",
]
