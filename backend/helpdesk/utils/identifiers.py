from __future__ import annotations

import os
import threading
import time
import uuid
from typing import Optional

_lock = threading.Lock()
_last_ms = 0
_sequence = 0


def generate_uuid7() -> str:
    """
    Generate a UUIDv7 string (time-ordered, monotonic within the process).

    Layout:
    - 48-bit Unix timestamp in milliseconds
    - 4-bit version (0b0111)
    - 12-bit sequence, randomly seeded each millisecond and incremented for
      ids generated within the same millisecond
    - 2-bit variant, 62 random bits

    Sorting by id therefore follows generation order, which the training
    audit trail relies on to order events stamped in the same instant.
    """
    global _last_ms, _sequence
    with _lock:
        ts_ms = time.time_ns() // 1_000_000
        if ts_ms <= _last_ms:
            ts_ms = _last_ms
            _sequence += 1
            if _sequence > 0xFFF:
                ts_ms += 1
                _sequence = 0
        else:
            _sequence = int.from_bytes(os.urandom(2), "big") & 0x7FF
        _last_ms = ts_ms
        sequence = _sequence

    raw = bytearray(
        ts_ms.to_bytes(6, "big", signed=False)
        + ((0x7 << 12) | sequence).to_bytes(2, "big")
        + os.urandom(8)
    )
    raw[8] = (raw[8] & 0x3F) | 0x80
    return str(uuid.UUID(bytes=bytes(raw)))


def normalise_id(value: Optional[str]) -> Optional[str]:
    """
    Return the canonical lowercase form of a UUID string, or None when the
    value is not a UUID at all.
    """
    if value is None:
        return None
    try:
        return str(uuid.UUID(str(value).strip()))
    except ValueError:
        return None
