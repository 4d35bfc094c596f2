"""Storage key convention for captured shopping lists.

    {subject_id}/{epoch_millis}.jpg

The subject prefix is the only ownership record downstream stages get:
ingestion and line resolution read the subject back from the key and never
from the caller or the image content.
"""

from __future__ import annotations

import re
import threading
import time
from collections.abc import Callable

from app.errors import ObjectKeyError

_KEY_RE = re.compile(r"^(?P<subject>[^/]+)/(?P<millis>\d+)\.jpg$")


def build_object_key(subject_id: str, epoch_millis: int) -> str:
    if not subject_id or "/" in subject_id:
        raise ObjectKeyError(f"Invalid subject identifier: {subject_id!r}")
    if epoch_millis < 0:
        raise ObjectKeyError(f"Negative capture timestamp: {epoch_millis}")
    return f"{subject_id}/{epoch_millis}.jpg"


def parse_object_key(key: str) -> tuple[str, int]:
    """Return ``(subject_id, epoch_millis)`` for a capture key."""
    match = _KEY_RE.match(key)
    if match is None:
        raise ObjectKeyError(f"Not a capture key: {key!r}")
    return match.group("subject"), int(match.group("millis"))


def _now_millis() -> int:
    return time.time_ns() // 1_000_000


class KeyAllocator:
    """Hands out capture keys that never repeat for a subject.

    Two tickets requested in the same millisecond would otherwise share a key,
    and the second upload would overwrite the first. The allocator bumps the
    timestamp past the last one it issued for that subject instead.
    """

    def __init__(self, clock: Callable[[], int] = _now_millis) -> None:
        self._clock = clock
        self._last: dict[str, int] = {}
        self._lock = threading.Lock()

    def allocate(self, subject_id: str) -> str:
        with self._lock:
            millis = self._clock()
            last = self._last.get(subject_id)
            if last is not None and millis <= last:
                millis = last + 1
            key = build_object_key(subject_id, millis)
            self._last[subject_id] = millis
        return key
