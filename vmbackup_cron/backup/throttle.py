"""
Bandwidth limiting shared by all transfer workers reading one source.
"""

import threading
import time
from typing import BinaryIO, Optional


READ_CHUNK_SIZE = 64 * 1024


class RateLimiter:
    """
    Token bucket limiting aggregate throughput in bytes per second.

    One instance is shared by every worker thread of a transfer, so the cap
    applies to the sum of their reads. The bucket holds at most one second of
    tokens.
    """

    def __init__(self, bytes_per_second: int, clock=time.monotonic, sleep=time.sleep):
        if bytes_per_second <= 0:
            raise ValueError("bytes_per_second must be positive")
        self.bytes_per_second = bytes_per_second
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()
        self._tokens = float(bytes_per_second)
        self._updated = clock()
        self._stopped = False

    def acquire(self, amount: int):
        """Block until `amount` bytes may pass."""
        while amount > 0 and not self._stopped:
            with self._lock:
                now = self._clock()
                elapsed = now - self._updated
                self._updated = now
                self._tokens = min(self.bytes_per_second, self._tokens + elapsed * self.bytes_per_second)

                granted = min(amount, int(self._tokens))
                self._tokens -= granted
                amount -= granted

                wait = 0.0
                if amount > 0:
                    wait = min(amount, self.bytes_per_second) / self.bytes_per_second

            if wait:
                self._sleep(wait)

    def stop(self):
        """Release any waiter; later acquires pass through."""
        self._stopped = True


class ThrottledReader:
    """File wrapper whose reads are charged against a RateLimiter."""

    def __init__(self, fileobj: BinaryIO, limiter: Optional[RateLimiter] = None):
        self._fileobj = fileobj
        self._limiter = limiter

    def read(self, size: int = -1) -> bytes:
        if self._limiter is None:
            return self._fileobj.read(size)

        if size is None or size < 0:
            chunks = []
            while True:
                chunk = self.read(READ_CHUNK_SIZE)
                if not chunk:
                    break
                chunks.append(chunk)
            return b''.join(chunks)

        data = self._fileobj.read(size)
        self._limiter.acquire(len(data))
        return data

    def close(self):
        self._fileobj.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
