# Inter-request delay for attachment downloads and uploads.
#
# The vault provider throttles (and eventually blocks) clients that hammer
# its attachment storage. Requests are issued one at a time and no two
# start less than `delay_ms` apart. The first request is never delayed.

import logging
import time
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class Throttle:
    """Minimum-interval gate between successive calls to ``wait()``.

    Args:
        delay_ms: Minimum spacing between requests, in milliseconds.
        clock: Monotonic clock in seconds (injectable for tests).
        sleep: Sleep function in seconds (injectable for tests).
    """

    def __init__(
        self,
        delay_ms: int,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if delay_ms < 0:
            raise ValueError("delay_ms must not be negative")
        self.delay = delay_ms / 1000.0
        self._clock = clock
        self._sleep = sleep
        self._last: Optional[float] = None

    def wait(self) -> None:
        """Block until the next request may start, then mark it started."""
        if self._last is not None:
            remaining = self.delay - (self._clock() - self._last)
            if remaining > 0:
                logger.debug("Throttling next request by %.3fs", remaining)
                self._sleep(remaining)
        self._last = self._clock()

    def reset(self):
        """Forget the previous request (next wait() returns immediately)."""
        self._last = None
