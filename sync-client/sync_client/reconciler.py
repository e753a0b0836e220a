import os
import threading
from typing import Callable, Optional

from sync_client import get_logger
from sync_client.client import SyncClient
from sync_client.errors import SyncError
from sync_client.models import LocalRecord
from sync_client.store import LocalStore
from sync_common import now_ms
from sync_common.codec import decompress
from sync_common.models.wire import PullRecord

LOG = get_logger(__name__)


class PullReconciler:
    """Periodically merges the server state of the user's books into the local store.

    A server record replaces the local one only when it is newer, and never while the local record is
    "active" (saved less than active_window_ms ago): a push of that save may still be in flight.
    """

    def __init__(self,
                 store: LocalStore,
                 client: SyncClient,
                 user_id: str,
                 limit: int = None,
                 active_window_ms: int = None,
                 clock: Callable[[], int] = now_ms,
                 on_applied: Callable[[LocalRecord], None] = None,
                 on_conflict: Callable[[LocalRecord, LocalRecord], None] = None):
        self.store = store
        self.client = client
        self.user_id = user_id
        self.limit = limit if limit is not None else int(os.getenv("SYNC_PULL_LIMIT", 20))
        self.active_window_ms = (active_window_ms if active_window_ms is not None
                                 else int(os.getenv("SYNC_ACTIVE_WINDOW_MS", 5000)))
        self.clock = clock
        self.on_applied = on_applied
        self.on_conflict = on_conflict

        self._thread: Optional[threading.Thread] = None
        self._stop = threading.Event()

    def should_apply(self, local: Optional[LocalRecord], remote: PullRecord, now: int) -> bool:
        if local is None:
            return True
        if remote.timestamp <= local.updated_at:
            return False
        if now - local.updated_at < self.active_window_ms:
            LOG.info("Ignoring server update of %s: local progress is active", remote.book_id)
            return False
        return True

    def reconcile(self) -> list[LocalRecord]:
        """Run one pull cycle. Returns the records written to the local store."""
        try:
            remote_records = self.client.pull(self.user_id, self.limit)
        except SyncError as e:
            LOG.warning("Skipping pull: %s", e)
            return []

        applied = []
        for remote in remote_records:
            local = self.store.get(remote.book_id)
            if not self.should_apply(local, remote, self.clock()):
                if self.on_conflict and local is not None and remote.timestamp > local.updated_at:
                    # Dropped by the active window, the user may still want the other position.
                    self.on_conflict(local, self.to_local_record(remote))
                continue

            record = self.to_local_record(remote)
            if not self.store.compare_and_put(record, local):
                LOG.info("Local progress of %s changed during the pull, keeping it", remote.book_id)
                continue

            LOG.info("Applied server progress of %s from device %s", remote.book_id, remote.device_id)
            applied.append(record)
            if self.on_applied:
                self.on_applied(record)

        return applied

    def to_local_record(self, remote: PullRecord) -> LocalRecord:
        return LocalRecord(user_id=self.user_id,
                           book_id=remote.book_id,
                           position=decompress(remote.cfi),
                           percentage=remote.percentage,
                           updated_at=remote.timestamp,
                           device_id=remote.device_id,
                           page_number=remote.page_number,
                           chapter_id=remote.chapter_id,
                           is_synced=True)

    def start(self, interval: float = None):
        if interval is None:
            interval = float(os.getenv("SYNC_POLL_SECONDS", 15))
        if self._thread is not None and self._thread.is_alive():
            return

        self._stop.clear()
        self._thread = threading.Thread(target=self._poll, args=[interval], name="progress-pull", daemon=True)
        self._thread.start()

    def stop(self, timeout: float = 5):
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def _poll(self, interval: float):
        LOG.info("Polling server progress every %s seconds...", interval)
        while not self._stop.is_set():
            try:
                self.reconcile()
            except Exception:
                LOG.exception("Error while pulling server progress.")
            self._stop.wait(interval)
