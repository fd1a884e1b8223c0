"""Per-course mutual exclusion for seat-affecting operations."""

from __future__ import annotations

import threading
import time
from collections import defaultdict
from contextlib import contextmanager
from typing import Iterator, Optional

from ..errors import CourseBusy


class CourseLockRegistry:
    """One lock per course id, created on first use.

    Different courses never contend with each other; callers on the same
    course are serialized for the duration of the `hold()` block.
    """

    def __init__(self, timeout_seconds: float = 10.0):
        self._locks = defaultdict(threading.Lock)
        self._guard = threading.Lock()
        self._timeout_seconds = timeout_seconds

    def _lock_for(self, course_id: int) -> threading.Lock:
        with self._guard:
            return self._locks[course_id]

    @contextmanager
    def hold(self, course_id: int, timeout: Optional[float] = None) -> Iterator[None]:
        """Hold the exclusion scope of `course_id`.

        Raises `CourseBusy` when the lock is not acquired within `timeout`
        seconds (the registry default when omitted).
        """
        wait_s = self._timeout_seconds if timeout is None else timeout
        lock = self._lock_for(course_id)
        started = time.monotonic()
        if not lock.acquire(timeout=wait_s):
            raise CourseBusy(course_id, time.monotonic() - started)
        try:
            yield
        finally:
            lock.release()

    def is_held(self, course_id: int) -> bool:
        return self._lock_for(course_id).locked()
