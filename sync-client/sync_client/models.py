import datetime
from dataclasses import dataclass
from datetime import UTC
from typing import Optional

from sqlalchemy import BigInteger, DateTime
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


@dataclass(frozen=True)
class LocalRecord:
    """Latest known reading position of a book on this device."""

    user_id: str
    book_id: str

    # Plain (uncompressed) position.
    position: str
    percentage: float

    # Epoch milliseconds of the capture on the device that produced the position.
    updated_at: int
    device_id: str

    page_number: Optional[int] = None
    chapter_id: Optional[str] = None

    # False until the server accepted this exact record, or it came from the server.
    is_synced: bool = False


@dataclass(frozen=True)
class SyncConflict:
    """Two positions of a book from different reading sessions. The user picks one, see SyncManager.force_upload
    and SyncManager.force_download.
    """

    book_id: str
    local: LocalRecord
    remote: LocalRecord


class ClientBase(DeclarativeBase):
    pass


class ProgressEntry(ClientBase):
    __tablename__ = "local_progress"

    book_id: Mapped[str] = mapped_column(primary_key=True)
    user_id: Mapped[str]
    position: Mapped[str]
    percentage: Mapped[float]
    updated_at: Mapped[int] = mapped_column(BigInteger)
    device_id: Mapped[str]
    page_number: Mapped[Optional[int]]
    chapter_id: Mapped[Optional[str]]
    is_synced: Mapped[bool] = mapped_column(default=False, index=True)
    stored_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True),
                                                         default=lambda: datetime.datetime.now(UTC),
                                                         onupdate=lambda: datetime.datetime.now(UTC))

    def to_record(self) -> LocalRecord:
        return LocalRecord(user_id=self.user_id,
                           book_id=self.book_id,
                           position=self.position,
                           percentage=self.percentage,
                           updated_at=self.updated_at,
                           device_id=self.device_id,
                           page_number=self.page_number,
                           chapter_id=self.chapter_id,
                           is_synced=self.is_synced)


class DeviceInfo(ClientBase):
    __tablename__ = "device_info"

    key: Mapped[str] = mapped_column(primary_key=True)
    value: Mapped[str]
