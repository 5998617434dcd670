"""
Utilities Module
Retry and polling helpers
"""

from .retry_helper import ExponentialBackoff, call_with_retries, poll_until

__all__ = [
    'ExponentialBackoff',
    'call_with_retries',
    'poll_until'
]
