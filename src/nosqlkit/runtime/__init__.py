from .batch import decode_write_multiple, prepare_write_multiple
from .classifier import ClassifiedError, classify
from .events import EventChannel
from .executor import OperationExecutor
from .pagination import PageIterable, RowCollector
from .poller import CompletionPoller
from .rate_limiter import RateLimiterRegistry, TokenBucketLimiter
from .retry import DefaultRetryPolicy, NoRetryPolicy, RetryEngine, RetryPolicy, RetryState

__all__ = [
    "ClassifiedError",
    "CompletionPoller",
    "DefaultRetryPolicy",
    "EventChannel",
    "NoRetryPolicy",
    "OperationExecutor",
    "PageIterable",
    "RateLimiterRegistry",
    "RetryEngine",
    "RetryPolicy",
    "RetryState",
    "RowCollector",
    "TokenBucketLimiter",
    "classify",
    "decode_write_multiple",
    "prepare_write_multiple",
]
