from __future__ import annotations


class RetryableJobError(Exception):
    """Transient failure; the bus retries with backoff until max_retry."""


class NonRetryableJobError(Exception):
    """Permanent failure; the job goes straight to the dead set."""
