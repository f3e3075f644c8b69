"""
Time-ordered record identities.

An identity is 24 lowercase hex characters: 8 for the creation second,
10 for a per-process random value and 6 for a wrapping counter. Sorting
identities as strings sorts them by creation second.
"""

import itertools
import os
import threading
import time
from typing import Optional

_PROCESS_UNIQUE = os.urandom(5).hex()
_counter = itertools.count(int.from_bytes(os.urandom(3), "big"))
_lock = threading.Lock()


def new_record_id(timestamp: Optional[float] = None) -> str:
    """Generate a new identity for a record created at ``timestamp``"""
    seconds = int(time.time() if timestamp is None else timestamp)
    with _lock:
        count = next(_counter) & 0xFFFFFF
    return f"{seconds & 0xFFFFFFFF:08x}{_PROCESS_UNIQUE}{count:06x}"
