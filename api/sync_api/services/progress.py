import os
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from enum import StrEnum
from typing import Annotated, Callable, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker
from tenacity import retry, retry_if_exception_type, stop_after_attempt

from sync_api import get_logger
from sync_api.models import db
from sync_api.models.db import DbSession
from sync_common import Service, log_slow, now_ms
from sync_common.models.wire import (ProgressRecord, PullRecord, PushResponse, PushStatus, ServerState,
                                     UpsertResult)

LOG = get_logger(__name__)

# In-process write locks on SQLite. Records hash onto them, unrelated records may share one.
KEY_LOCK_STRIPES = 64


class NotAuthenticatedError(Exception):
    pass


class TimestampOutOfRangeError(ValueError):
    """The client timestamp cannot be trusted. Retrying the same payload fails again."""


class ClockSkewError(TimestampOutOfRangeError):
    pass


class StaleTimestampError(TimestampOutOfRangeError):
    pass


class Reason(StrEnum):
    new_record = "new_record"
    newer_timestamp = "newer_timestamp"
    same_device = "same_device"
    older_timestamp = "older_timestamp"
    hot_window = "hot_window"


@dataclass
class UpsertOutcome:
    updated: bool
    reason: Reason
    record: ProgressRecord

    def to_result(self) -> UpsertResult:
        return UpsertResult(updated=self.updated, conflict=not self.updated, data=self.record)

    def to_push_response(self) -> PushResponse:
        if self.updated:
            return PushResponse(status=PushStatus.updated, reason=self.reason)

        return PushResponse(status=PushStatus.ignored,
                            reason=self.reason,
                            server_state=ServerState(cfi=self.record.cfi,
                                                     percentage=self.record.percentage,
                                                     timestamp=self.record.updated_at,
                                                     device_id=self.record.device_id))


class ProgressService(Service):
    """Last-writer-wins storage of reading progress.

    Writes are ordered by the client timestamp, with a hot window: a record accepted less than
    hot_window_ms ago (server time) can only be overridden by the device that wrote it. Every
    attempt refreshes server_synced_at, so a burst of competing stale writes keeps extending the
    window of the current winner.
    """

    def __init__(self,
                 session_factory: sessionmaker = DbSession,
                 clock: Callable[[], int] = now_ms,
                 hot_window_ms: int = None,
                 max_future_skew_ms: int = None,
                 max_age_ms: int = None,
                 pull_max_limit: int = None):
        self.session_factory = session_factory
        self.clock = clock
        self.hot_window_ms = _or_env(hot_window_ms, "SYNC_HOT_WINDOW_MS", 10_000)
        self.max_future_skew_ms = _or_env(max_future_skew_ms, "SYNC_MAX_FUTURE_SKEW_MS", 5 * 60 * 1000)
        self.max_age_ms = _or_env(max_age_ms, "SYNC_MAX_AGE_MS", 30 * 24 * 60 * 60 * 1000)
        self.pull_max_limit = _or_env(pull_max_limit, "SYNC_PULL_MAX_LIMIT", 100)

        # SQLite has no SELECT ... FOR UPDATE, serialize writers of the same record in-process instead.
        bind = session_factory.kw.get("bind")
        self._row_locks = bind is not None and bind.dialect.name != "sqlite"
        self._key_locks = [threading.Lock() for _ in range(KEY_LOCK_STRIPES)]

    @log_slow(threshold_ms=100)
    def upsert_progress(self,
                        user_id: str,
                        book_id: str,
                        position: str,
                        percentage: float,
                        device_id: str,
                        updated_at: int,
                        page_number: Optional[int] = None,
                        chapter_id: Optional[str] = None) -> UpsertOutcome:
        if not user_id:
            raise NotAuthenticatedError("Not authenticated")

        now = self.clock()
        self.validate_timestamp(updated_at, now)

        with self._serialized(user_id, book_id):
            outcome = self._upsert(user_id, book_id, position, percentage, device_id, updated_at,
                                   page_number, chapter_id, now)

        if outcome.updated:
            LOG.info("Accepted progress of %s/%s from device %s (%s), version %s.",
                     user_id, book_id, device_id, outcome.reason, outcome.record.sync_version)
        else:
            LOG.info("Ignored progress of %s/%s from device %s (%s), kept version of device %s.",
                     user_id, book_id, device_id, outcome.reason, outcome.record.device_id)
        return outcome

    def validate_timestamp(self, updated_at: int, now: int):
        if updated_at > now + self.max_future_skew_ms:
            raise ClockSkewError(f"Timestamp too far in future ({updated_at - now} ms ahead of server time)")
        if updated_at < now - self.max_age_ms:
            raise StaleTimestampError(f"Timestamp too old ({now - updated_at} ms behind server time)")

    def should_apply(self, existing: Optional[db.ReadingProgress], device_id: str, updated_at: int,
                     now: int) -> tuple[bool, Reason]:
        if existing is None:
            return True, Reason.new_record

        if updated_at <= existing.updated_at:
            return False, Reason.older_timestamp

        if device_id == existing.device_id:
            return True, Reason.same_device

        if now - existing.server_synced_at > self.hot_window_ms:
            return True, Reason.newer_timestamp

        return False, Reason.hot_window

    @retry(retry=retry_if_exception_type(IntegrityError), stop=stop_after_attempt(2), reraise=True)
    def _upsert(self, user_id, book_id, position, percentage, device_id, updated_at, page_number, chapter_id,
                now) -> UpsertOutcome:
        # A concurrent first write of the same record fails on the unique constraint. The retry finds the
        # row created by the winner and locks it like any other update.
        with self.session_factory() as session, session.begin():
            stmt = (select(db.ReadingProgress)
                    .where(db.ReadingProgress.user_id == user_id, db.ReadingProgress.book_id == book_id)
                    .with_for_update())
            progress = session.scalar(stmt)
            apply, reason = self.should_apply(progress, device_id, updated_at, now)

            if progress is None:
                progress = db.ReadingProgress(user_id=user_id,
                                              book_id=book_id,
                                              sync_version=0,
                                              last_opened_at=updated_at)
                session.add(progress)

            if apply:
                progress.cfi = position
                progress.percentage = percentage
                progress.page_number = page_number
                progress.chapter_id = chapter_id
                progress.device_id = device_id
                progress.updated_at = updated_at
                progress.sync_version += 1

            progress.server_synced_at = now
            progress.last_opened_at = max(progress.last_opened_at or 0, updated_at)
            session.flush()

            return UpsertOutcome(updated=apply, reason=reason, record=ProgressRecord.model_validate(progress.as_dict()))

    @contextmanager
    def _serialized(self, user_id: str, book_id: str):
        if self._row_locks:
            yield
            return

        with self.key_lock(user_id, book_id):
            yield

    def key_lock(self, user_id: str, book_id: str) -> threading.Lock:
        return self._key_locks[hash((user_id, book_id)) % len(self._key_locks)]

    def get_progress(self, user_id: str, book_id: str) -> Optional[db.ReadingProgress]:
        with self.session_factory() as session:
            stmt = select(db.ReadingProgress).where(db.ReadingProgress.user_id == user_id,
                                                    db.ReadingProgress.book_id == book_id)
            return session.scalar(stmt)

    def get_recent(self, user_id: str, limit: int = 20, since: Optional[int] = None) -> list[db.ReadingProgress]:
        """Records of the user, most recently accepted first.

        `since` filters on server activity, which rejected attempts refresh too, so a client may get a record it
        already has.
        """
        limit = max(1, min(limit, self.pull_max_limit))
        with self.session_factory() as session:
            stmt = select(db.ReadingProgress).where(db.ReadingProgress.user_id == user_id)
            if since is not None:
                stmt = stmt.where(db.ReadingProgress.server_synced_at > since)
            stmt = stmt.order_by(db.ReadingProgress.updated_at.desc(), db.ReadingProgress.id.desc()).limit(limit)
            return list(session.scalars(stmt).all())

    @staticmethod
    def to_pull_record(progress: db.ReadingProgress) -> PullRecord:
        return PullRecord(book_id=progress.book_id,
                          cfi=progress.cfi,
                          percentage=progress.percentage,
                          timestamp=progress.updated_at,
                          device_id=progress.device_id,
                          page_number=progress.page_number,
                          chapter_id=progress.chapter_id)


def _or_env(value, name: str, default: int) -> int:
    return value if value is not None else int(os.getenv(name, default))


ProgressServiceDep = Annotated[ProgressService, ProgressService.dep()]
