import os
import threading
from dataclasses import replace
from enum import StrEnum
from typing import Callable, Optional

from dotenv import load_dotenv

from sync_client import get_logger
from sync_client.client import SyncClient
from sync_client.debouncer import PushDebouncer
from sync_client.errors import SyncRejectedError, SyncTransportError
from sync_client.models import LocalRecord, SyncConflict
from sync_client.reconciler import PullReconciler
from sync_client.store import LocalStore
from sync_common import now_ms
from sync_common.codec import decompress
from sync_common.models.wire import PushResponse, PushStatus

LOG = get_logger(__name__)

# Mirrors the server hot window. Closer positions are treated as the same reading session.
CONFLICT_WINDOW_MS = 10_000
CONFLICT_MIN_PERCENTAGE_DIFF = 0.01


class SyncStatus(StrEnum):
    idle = "idle"
    syncing = "syncing"
    synced = "synced"
    error = "error"
    offline = "offline"


class SyncManager:
    """Offline-first reading progress of one user on this device.

    Saves go to the local store first and always succeed when the store does. Pushing to the server happens in
    the background after the saves settle down, and a poller merges progress made on other devices.
    """

    def __init__(self,
                 user_id: str,
                 store: LocalStore = None,
                 client: SyncClient = None,
                 clock: Callable[[], int] = now_ms,
                 debounce_seconds: float = None,
                 poll_seconds: float = None,
                 pull_limit: int = None,
                 active_window_ms: int = None,
                 max_rejections: int = 3,
                 backoff: bool = True):
        load_dotenv()
        self.user_id = user_id
        self.store = store or LocalStore()
        self.client = client or SyncClient()
        self.clock = clock
        self.poll_seconds = poll_seconds if poll_seconds is not None else float(os.getenv("SYNC_POLL_SECONDS", 15))
        if debounce_seconds is None:
            debounce_seconds = float(os.getenv("SYNC_DEBOUNCE_SECONDS", 2))
        self.max_rejections = max_rejections

        self.debouncer = PushDebouncer(self._push_book,
                                       delay=debounce_seconds,
                                       backoff=backoff)
        self.reconciler = PullReconciler(self.store, self.client, user_id,
                                         limit=pull_limit,
                                         active_window_ms=active_window_ms,
                                         clock=clock,
                                         on_applied=self._notify_remote,
                                         on_conflict=self._check_conflict)

        self._status = SyncStatus.idle
        self._status_listeners: list[Callable[[SyncStatus], None]] = []
        self._remote_listeners: list[Callable[[LocalRecord], None]] = []
        self._conflict_listeners: list[Callable[[SyncConflict], None]] = []
        self._rejections: dict[str, int] = {}
        self._lock = threading.Lock()

    @property
    def device_id(self) -> str:
        return self.store.device_id

    @property
    def status(self) -> SyncStatus:
        return self._status

    def add_status_listener(self, listener: Callable[[SyncStatus], None]):
        self._status_listeners.append(listener)

    def add_remote_listener(self, listener: Callable[[LocalRecord], None]):
        """Called with every record pulled from the server into the local store."""
        self._remote_listeners.append(listener)

    def add_conflict_listener(self, listener: Callable[[SyncConflict], None]):
        """Called when the server or a pull keeps a position that looks like a separate reading session."""
        self._conflict_listeners.append(listener)

    def start(self):
        # Saves of a previous run that never reached the server.
        for record in self.store.unsynced():
            if record.user_id == self.user_id:
                self.debouncer.enqueue(record.book_id)
        self.reconciler.start(self.poll_seconds)

    def close(self):
        try:
            self.force_sync_pending()
        except Exception:
            LOG.exception("Failed to sync pending progress on close")
        finally:
            self.reconciler.stop()
            self.debouncer.close()

    def save_progress(self,
                      book_id: str,
                      position: str,
                      percentage: float,
                      page_number: Optional[int] = None,
                      chapter_id: Optional[str] = None) -> LocalRecord:
        record = LocalRecord(user_id=self.user_id,
                             book_id=book_id,
                             position=position,
                             percentage=percentage,
                             updated_at=self.clock(),
                             device_id=self.device_id,
                             page_number=page_number,
                             chapter_id=chapter_id,
                             is_synced=False)
        self.store.put(record)
        LOG.debug("Saved progress of %s locally at %s", book_id, record.updated_at)

        self.debouncer.enqueue(book_id)
        return record

    def get_progress(self, book_id: str) -> Optional[LocalRecord]:
        return self.store.get(book_id)

    def force_sync_pending(self) -> set[str]:
        """Push queued books right away, e.g. when the app is closing. Returns the books that failed."""
        return self.debouncer.flush_now()

    def force_upload(self, book_id: str) -> bool:
        """Make this device's position win: re-stamp it with the current time and push it immediately."""
        record = self.store.get(book_id)
        if record is None:
            return False

        record = replace(record, updated_at=self.clock(), device_id=self.device_id, is_synced=False)
        self.store.put(record)
        if self._push_book(book_id):
            return True

        self.debouncer.enqueue(book_id)
        return False

    def force_download(self, book_id: str) -> Optional[LocalRecord]:
        """Take the server position of the book, whatever the local one is."""
        try:
            remote = self.client.get_progress(book_id)
        except (SyncTransportError, SyncRejectedError) as e:
            LOG.warning("Failed to download progress of %s: %s", book_id, e)
            self._set_status(SyncStatus.offline if isinstance(e, SyncTransportError) else SyncStatus.error)
            return None

        if remote is None:
            return None

        record = self.reconciler.to_local_record(remote)
        self.store.put(record)
        self._notify_remote(record)
        return record

    def pull_now(self) -> list[LocalRecord]:
        return self.reconciler.reconcile()

    @staticmethod
    def detect_conflict(local: LocalRecord, remote: LocalRecord) -> bool:
        """Whether two positions look like separate reading sessions the user should choose between."""
        if local.device_id == remote.device_id:
            return False

        outside_window = abs(local.updated_at - remote.updated_at) > CONFLICT_WINDOW_MS
        positions_differ = abs(local.percentage - remote.percentage) > CONFLICT_MIN_PERCENTAGE_DIFF
        return outside_window and positions_differ

    def _push_book(self, book_id: str) -> bool:
        """Push the current record of the book. Returns False if it has to be pushed again later."""
        record = self.store.get(book_id)
        if record is None or record.is_synced:
            return True

        self._set_status(SyncStatus.syncing)
        try:
            response = self.client.push(record)
        except SyncTransportError as e:
            LOG.warning("Failed to push progress of %s, will retry: %s", book_id, e)
            self._set_status(SyncStatus.offline)
            return False
        except SyncRejectedError as e:
            with self._lock:
                rejections = self._rejections.get(book_id, 0) + 1
                self._rejections[book_id] = rejections
            self._set_status(SyncStatus.error)
            if rejections >= self.max_rejections:
                LOG.error("Server rejected progress of %s %s times, giving up: %s", book_id, rejections, e)
                with self._lock:
                    self._rejections.pop(book_id, None)
                return True
            LOG.warning("Server rejected progress of %s: %s", book_id, e)
            return False

        with self._lock:
            self._rejections.pop(book_id, None)

        if response.status == PushStatus.updated:
            self.store.mark_synced(book_id, record.updated_at)
            LOG.info("Synced progress of %s", book_id)
        else:
            # The server kept a different record. The next pull brings it here.
            LOG.info("Server ignored progress of %s (%s: %s)", book_id, response.status, response.reason)
            if response.server_state is not None:
                self._check_conflict(record, self._server_record(record, response))
        self._set_status(SyncStatus.synced)
        return True

    @staticmethod
    def _server_record(record: LocalRecord, response: PushResponse) -> LocalRecord:
        state = response.server_state
        return LocalRecord(user_id=record.user_id,
                           book_id=record.book_id,
                           position=decompress(state.cfi),
                           percentage=state.percentage,
                           updated_at=state.timestamp,
                           device_id=state.device_id,
                           is_synced=True)

    def _check_conflict(self, local: LocalRecord, remote: LocalRecord):
        if not self.detect_conflict(local, remote):
            return

        LOG.info("Conflicting progress of %s: %.1f%% here, %.1f%% on device %s",
                 local.book_id, local.percentage * 100, remote.percentage * 100, remote.device_id)
        conflict = SyncConflict(book_id=local.book_id, local=local, remote=remote)
        for listener in self._conflict_listeners:
            try:
                listener(conflict)
            except Exception:
                LOG.exception("Sync conflict listener failed")

    def _set_status(self, status: SyncStatus):
        if status == self._status:
            return
        self._status = status
        for listener in self._status_listeners:
            try:
                listener(status)
            except Exception:
                LOG.exception("Sync status listener failed")

    def _notify_remote(self, record: LocalRecord):
        for listener in self._remote_listeners:
            try:
                listener(record)
            except Exception:
                LOG.exception("Remote progress listener failed")
