import logging
import threading
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


class StatusPoller:
    """
    Calls `fetch` every `interval` seconds and hands the result to
    `on_result`. At most one fetch is in flight; a tick that lands while
    one is outstanding is skipped, not queued.
    """

    def __init__(
        self,
        fetch: Callable[[], Any],
        on_result: Callable[[Any], None],
        *,
        interval: float = 5.0,
        on_error: Optional[Callable[[Exception], None]] = None,
    ):
        self.fetch = fetch
        self.on_result = on_result
        self.on_error = on_error
        self.interval = interval
        self.skipped = 0
        self._in_flight = threading.Lock()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._fetch_thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="status-poller", daemon=True)
        self._thread.start()

    def stop(self, timeout: Optional[float] = None) -> None:
        """Stop ticking and wait for the loop and any in-flight fetch."""
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        fetch_thread = self._fetch_thread
        if fetch_thread is not None and fetch_thread is not threading.current_thread():
            fetch_thread.join(timeout)

    def _loop(self) -> None:
        self.tick()
        while not self._stop.wait(self.interval):
            self.tick()

    def tick(self) -> bool:
        """Start a fetch unless one is running. Returns False if skipped."""
        if not self._in_flight.acquire(blocking=False):
            self.skipped += 1
            return False
        self._fetch_thread = threading.Thread(target=self._run_once, name="status-fetch", daemon=True)
        self._fetch_thread.start()
        return True

    def _run_once(self) -> None:
        try:
            result = self.fetch()
        except Exception as e:
            if self.on_error is None:
                logger.warning("status poll failed: %s", e)
            else:
                self.on_error(e)
            return
        finally:
            self._in_flight.release()

        if not self._stop.is_set():
            self.on_result(result)
