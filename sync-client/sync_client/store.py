import os
import threading
import uuid
from contextlib import contextmanager
from dataclasses import asdict
from typing import Optional

from sqlalchemy import create_engine, event, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from sync_client import get_logger
from sync_client.errors import LocalStoreError
from sync_client.models import ClientBase, DeviceInfo, LocalRecord, ProgressEntry

LOG = get_logger(__name__)

DEVICE_ID_KEY = "device_id"


class LocalStore:
    """Durable on-device storage of reading progress, one record per book.

    Every write runs in its own SQLite transaction, so a failed write leaves the previous record in place.
    """

    def __init__(self, db_path: str = None):
        self.db_path = db_path or os.getenv("SYNC_DB_PATH", "./reading_sync.db")
        self.engine = create_engine(f"sqlite:///{self.db_path}", connect_args={"check_same_thread": False})
        event.listen(self.engine, "connect", _enable_wal)
        ClientBase.metadata.create_all(self.engine)
        self.session_factory = sessionmaker(self.engine, expire_on_commit=False)

        self._device_id: Optional[str] = None
        self._device_id_lock = threading.Lock()

    @property
    def device_id(self) -> str:
        """Random id of this installation. Generated on first use and kept forever."""
        with self._device_id_lock:
            if self._device_id is None:
                self._device_id = self._load_or_create_device_id()
            return self._device_id

    def _load_or_create_device_id(self) -> str:
        with self._transaction() as session:
            device_info = session.get(DeviceInfo, DEVICE_ID_KEY)
            if device_info is None:
                device_info = DeviceInfo(key=DEVICE_ID_KEY, value=str(uuid.uuid4()))
                session.add(device_info)
                LOG.info("Generated device id %s", device_info.value)
            return device_info.value

    def put(self, record: LocalRecord):
        with self._transaction() as session:
            session.merge(ProgressEntry(**asdict(record)))

    def compare_and_put(self, record: LocalRecord, expected: Optional[LocalRecord]) -> bool:
        """Store the record only if the stored one is still `expected` (None meaning no record).

        Lets a background merge decide on a snapshot without overwriting a local save that happened meanwhile.
        """
        with self._transaction() as session:
            current = session.get(ProgressEntry, record.book_id)
            if current is None and expected is not None:
                return False
            if current is not None and (expected is None or current.to_record() != expected):
                return False
            session.merge(ProgressEntry(**asdict(record)))
            return True

    def get(self, book_id: str) -> Optional[LocalRecord]:
        with self._transaction() as session:
            entry = session.get(ProgressEntry, book_id)
            return entry.to_record() if entry else None

    def mark_synced(self, book_id: str, updated_at: int) -> bool:
        """Flag the record as synced, unless a newer local save replaced the pushed one."""
        with self._transaction() as session:
            stmt = (update(ProgressEntry)
                    .where(ProgressEntry.book_id == book_id, ProgressEntry.updated_at == updated_at)
                    .values(is_synced=True))
            return session.execute(stmt).rowcount > 0

    def unsynced(self) -> list[LocalRecord]:
        with self._transaction() as session:
            stmt = select(ProgressEntry).where(ProgressEntry.is_synced.is_(False)).order_by(ProgressEntry.updated_at)
            return [entry.to_record() for entry in session.scalars(stmt)]

    def close(self):
        self.engine.dispose()

    @contextmanager
    def _transaction(self):
        try:
            with self.session_factory() as session, session.begin():
                yield session
        except SQLAlchemyError as e:
            raise LocalStoreError(f"Local progress storage failed: {e}") from e


def _enable_wal(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA synchronous=FULL")
    cursor.close()
