import math
import threading
import time
from logging import getLogger
from typing import Optional

from xrestsync.remote.errors import RequestCancelledError

log = getLogger(__name__)


def bucket_capacity(rate: float) -> int:
    """
    Size of the bucket for `rate` tokens per second: `rate` rounded half away from zero, but
    never less than `1` (a bucket of zero would block forever for rates under `0.5`).
    """
    return max(int(math.floor(rate + 0.5)), 1)


class TokenBucket:
    """
    Thread-safe token bucket. It starts full, holds at most `TokenBucket.capacity` tokens and
    refills at `TokenBucket.rate` tokens per second.

    Tokens are reserved up-front: a caller that has to wait already owns its token (the bucket
    may go negative). If the wait is cancelled the token is given back.

    `rate=None` means unlimited, `TokenBucket.wait` will always return right away.
    """

    rate: Optional[float]
    """ Tokens per second, `None` is unbounded. """

    capacity: int
    """ Maximum tokens held at once (burst size). """

    def __init__(self, rate: Optional[float]):
        self.rate = rate
        self.capacity = bucket_capacity(rate) if rate else 0
        self._tokens = float(self.capacity)
        self._updated_at = time.monotonic()
        self._lock = threading.Lock()

    def _refill(self, now: float):
        elapsed = now - self._updated_at
        self._updated_at = now
        self._tokens = min(float(self.capacity), self._tokens + elapsed * self.rate)

    def reserve(self) -> float:
        """ Takes a token, returns how many seconds the caller has to wait before using it. """
        with self._lock:
            self._refill(time.monotonic())
            self._tokens -= 1
            if self._tokens >= 0:
                return 0.0
            return -self._tokens / self.rate

    def cancel_reservation(self):
        with self._lock:
            self._refill(time.monotonic())
            self._tokens = min(float(self.capacity), self._tokens + 1)

    def wait(self, cancel: threading.Event = None):
        """
        Blocks until a token is available.

        Args:
            cancel: If this event is set before/while we wait, the reserved token is returned
                to the bucket and `xrestsync.remote.errors.RequestCancelledError` is raised.
        """
        if not self.rate:
            return

        if cancel is not None and cancel.is_set():
            raise RequestCancelledError("Request cancelled before a rate limit permit was taken.")

        delay = self.reserve()
        if delay <= 0:
            return

        log.debug("Rate limited, waiting (%.3f) seconds for a permit.", delay)
        if cancel is None:
            time.sleep(delay)
            return

        if cancel.wait(delay):
            self.cancel_reservation()
            raise RequestCancelledError("Request cancelled while waiting for a rate limit permit.")
