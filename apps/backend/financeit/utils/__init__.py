"""
Utils 패키지
"""

from .timestamps import (
    CANONICAL_FORMAT,
    format_timestamp,
    normalize_timestamp,
    now_local_naive,
    parse_timestamp,
)

__all__ = [
    "CANONICAL_FORMAT",
    "format_timestamp",
    "normalize_timestamp",
    "now_local_naive",
    "parse_timestamp",
]
