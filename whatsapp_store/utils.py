"""
Utility functions for the message store.
"""

from datetime import datetime, timezone


def utc_timestamp() -> str:
    """
    Current server time as an ISO-8601 UTC string.

    Microsecond precision keeps lexical order equal to insertion order for
    rows written in quick succession.
    """
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")
