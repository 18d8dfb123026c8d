"""
Client session: one fetcher, one override store, one dispatcher, one view.

    session = BoardSession.from_config(Config.load())
    with session.polling():
        board = session.view()
        session.dispatcher.move(task_id, project_id, "alice")

Every successful refresh prunes overrides the new snapshot already encodes.
"""
import logging
from typing import Callable, Optional

from .client import BoardClient
from .config import Config
from .dispatcher import MutationDispatcher
from .fetcher import SnapshotFetcher
from .overrides import OverrideStore
from .reconciler import BoardView, project
from .schema import Document

logger = logging.getLogger(__name__)


class BoardSession:
    def __init__(self, store: OverrideStore, client: BoardClient, poll_interval: float = 60.0,
                 retry_attempts: int = 3, retry_backoff: float = 2.0, executor=None):
        self.store = store
        self.client = client
        self.fetcher = SnapshotFetcher(client, interval=poll_interval)
        self.dispatcher = MutationDispatcher(
            store, client,
            view_provider=self.view,
            executor=executor,
            max_attempts=retry_attempts,
            backoff=retry_backoff,
        )
        self.fetcher.subscribe(self._on_snapshot)

    @classmethod
    def from_config(cls, cfg: Config, executor=None) -> "BoardSession":
        client = BoardClient(cfg.api_url, timeout=cfg.request_timeout, api_key=cfg.api_secret)
        return cls(
            OverrideStore(cfg.overrides_db),
            client,
            poll_interval=cfg.poll_interval,
            retry_attempts=cfg.retry_attempts,
            retry_backoff=cfg.retry_backoff,
            executor=executor,
        )

    def _on_snapshot(self, document: Document) -> None:
        removed = self.store.prune(document)
        if removed:
            logger.info(f"Snapshot superseded {removed} local override(s)")

    @property
    def error(self):
        """Last refresh failure, or None when the last refresh succeeded."""
        return self.fetcher.error

    def refresh(self) -> Optional[Document]:
        return self.fetcher.refresh()

    def view(self) -> BoardView:
        """The board as it should render now: last good snapshot + local overrides."""
        return project(self.fetcher.last_good or Document(), self.store.snapshot())

    def on_change(self, callback: Callable[[str, str], None]) -> None:
        """Called with (scope, key) whenever local state changes, from any session sharing this store object."""
        self.store.subscribe(callback)

    def polling(self):
        return self.fetcher.polling()

    def close(self) -> None:
        self.fetcher.stop()
        self.dispatcher.close(wait=False)
