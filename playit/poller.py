"""Client side of the change-notification protocol.

A poller holds a ``last_updated`` cursor from its previous successful fetch
and asks for the queue only if it changed since then. The cursor moves only
when a state is actually received, so a failed or empty poll never skips an
update; it can only delay it.
"""
import threading
import time
from typing import Callable, Dict, Optional

import requests

from .logging import get_logger, with_context
from .utils.backoff import poll_delay

DEFAULT_POLL_INTERVAL = 2.0

Fetcher = Callable[[int], Optional[Dict]]


def http_fetcher(base_url: str, timeout: float = 10.0, session: Optional[requests.Session] = None) -> Fetcher:
    """Fetch function that polls ``GET {base_url}/api/queue?since=<cursor>``."""
    http = session or requests.Session()
    url = base_url.rstrip('/') + '/api/queue'

    def fetch(since: int) -> Optional[Dict]:
        r = http.get(url, params={'since': since}, timeout=timeout)
        r.raise_for_status()
        data = r.json()
        if not data.get('updated'):
            return None
        return {
            'tracks': data.get('tracks') or [],
            'last_updated': int(data.get('last_updated') or data.get('lastUpdated') or 0),
        }

    return fetch


class QueuePoller:
    def __init__(
        self,
        fetch: Fetcher,
        interval: float = DEFAULT_POLL_INTERVAL,
        on_update: Optional[Callable[[Dict], None]] = None,
        cursor: int = 0,
    ):
        self.fetch = fetch
        self.interval = float(interval)
        self.on_update = on_update
        self.cursor = int(cursor)
        self.latest: Optional[Dict] = None
        self.failures = 0
        self.logger = get_logger(__name__)
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def poll_once(self) -> Optional[Dict]:
        """Poll a single time. Returns the new state, or None when unchanged.

        Fetch errors propagate; the cursor is left where it was.
        """
        state = self.fetch(self.cursor)
        if state is None:
            return None
        self.cursor = int(state['last_updated'])
        self.latest = state
        if self.on_update:
            self.on_update(state)
        return state

    def _next_delay(self) -> float:
        return poll_delay(self.interval, self.failures)

    def start(self):
        if self._thread and self._thread.is_alive():
            return
        log, _ = with_context(self.logger)

        def loop():
            while not self._stop.is_set():
                try:
                    self.poll_once()
                    self.failures = 0
                except Exception as e:
                    self.failures += 1
                    log.warning(f"queue poll failed ({self.failures} in a row): {e}")
                deadline = time.time() + self._next_delay()
                # Wait in small increments so stop signal is responsive
                while not self._stop.is_set():
                    remaining = deadline - time.time()
                    if remaining <= 0:
                        break
                    self._stop.wait(min(remaining, 1.0))

        self._stop.clear()
        self._thread = threading.Thread(target=loop, daemon=True)
        self._thread.start()

    def stop(self):
        self._stop.set()
        if self._thread:
            self._thread.join(timeout=1.0)

    def is_running(self) -> bool:
        return bool(self._thread and self._thread.is_alive())
