"""Retry and failure-tracking primitives."""

from .failed_targets import FailedTarget, FailedTargetQueue
from .retry import RetryPolicy, default_is_retryable, with_retry

__all__ = ["FailedTarget", "FailedTargetQueue", "RetryPolicy", "default_is_retryable", "with_retry"]
