"""
Core Utilities Package

This package contains utility functions and helpers used throughout the application.

Modules:
    - time: Timestamp conversion and normalization utilities
    - concurrency: Bounded, order-preserving fan-out of coroutines
"""

from core.utils.concurrency import gather_bounded
from core.utils.time import current_utc_datetime, ensure_utc, to_utc_datetime

__all__ = ["current_utc_datetime", "ensure_utc", "gather_bounded", "to_utc_datetime"]
