"""Canonical ID, timestamp and partitioning helpers.

Timestamp Rule
--------------
All timestamps are ``datetime`` with ``tzinfo=timezone.utc``; never naive.
Naive values arriving over the wire are interpreted as UTC.
"""

from __future__ import annotations

import uuid
import zlib
from datetime import datetime, timezone


def new_id() -> str:
    """Generate a new UUID v4 string.  Used for event ids."""
    return str(uuid.uuid4())


def utc_now() -> datetime:
    """Return the current UTC time as a timezone-aware datetime."""
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Attach UTC to a naive datetime, convert an aware one."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def partition_for(key: str, partitions: int) -> int:
    """Map a partition key to a stable partition index.

    CRC32 is stable across processes (unlike ``hash()``), so every
    producer routes a given key to the same partition.
    """
    if partitions < 1:
        raise ValueError(f"partitions must be >= 1, got {partitions}")
    return zlib.crc32(key.encode("utf-8")) % partitions
