from .retry import compute_backoff, schedule_retry, with_conflict_retry

__all__ = ["compute_backoff", "schedule_retry", "with_conflict_retry"]
