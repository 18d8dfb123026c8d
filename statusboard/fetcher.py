# Status board — snapshot fetcher
#
# Pulls the live document on a fixed interval and on demand. A failed pull
# never replaces the last good document; it only raises the error flag.

import logging
import threading
from contextlib import contextmanager
from typing import Callable, List, Optional

from .client import BoardClient
from .errors import BoardError, ParseFailure
from .schema import Document

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL = 60.0


class SnapshotFetcher:
    """Keeps the latest good Document from the board API."""

    def __init__(self, client: BoardClient, interval: float = DEFAULT_INTERVAL):
        self.client = client
        self.interval = interval
        self.last_good: Optional[Document] = None
        self.error: Optional[BoardError] = None
        self._listeners: List[Callable[[Document], None]] = []
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def current(self) -> Optional[Document]:
        return self.last_good

    def fetch(self) -> Document:
        """One GET of the document. Raises NetworkFailure or ParseFailure."""
        data = self.client.snapshot()
        try:
            return Document.from_dict(data)
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise ParseFailure("Snapshot has an unexpected shape", str(e))

    def subscribe(self, callback: Callable[[Document], None]) -> None:
        """Call `callback(document)` after every successful refresh."""
        self._listeners.append(callback)

    def refresh(self) -> Optional[Document]:
        """Fetch and keep the result; on failure keep the previous document."""
        try:
            document = self.fetch()
        except BoardError as e:
            with self._lock:
                self.error = e
            logger.warning(f"Snapshot refresh failed, keeping last good document: {e}")
            return self.last_good

        with self._lock:
            self.last_good = document
            self.error = None
        for callback in list(self._listeners):
            try:
                callback(document)
            except Exception as e:
                logger.error(f"Snapshot listener failed: {e}")
        return document

    # ── Polling ──────────────────────────────────────────────────────────────

    def _run(self):
        while not self._stop.wait(self.interval):
            try:
                self.refresh()
            except Exception as e:
                logger.exception(f"Snapshot poll failed: {e}")

    def start(self) -> None:
        """Start the background poll. Calling it twice is harmless."""
        if self._thread and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="snapshot-poll", daemon=True)
        self._thread.start()
        logger.info(f"Polling snapshots every {self.interval:.0f}s")

    def stop(self, timeout: float = 5.0) -> None:
        self._stop.set()
        if self._thread:
            self._thread.join(timeout)
            self._thread = None

    @property
    def running(self) -> bool:
        return bool(self._thread and self._thread.is_alive())

    @contextmanager
    def polling(self):
        """Poll for the duration of the block; the timer is always cancelled on exit."""
        self.start()
        try:
            yield self
        finally:
            self.stop()
