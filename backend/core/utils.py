"""Utility functions for the Automail engine."""

from datetime import datetime, timezone


def utcnow_naive() -> datetime:
    """Return the current UTC time as a **naive** datetime.

    Queue and campaign timestamps are stored in ``TIMESTAMP WITHOUT TIME
    ZONE`` columns, so every comparison against them must be naive UTC too.
    """
    return datetime.now(timezone.utc).replace(tzinfo=None)
