import datetime
import os
from datetime import UTC
from typing import Optional

from dotenv import load_dotenv
from sqlalchemy import create_engine, BigInteger, DateTime, Engine, Index, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, sessionmaker

load_dotenv()


def create_db_engine(url: str) -> Engine:
    if url.startswith("sqlite"):
        # Local development only, connections are shared between the request threads.
        return create_engine(url, connect_args={"check_same_thread": False})
    return create_engine(url, pool_recycle=600)


pg_url = os.path.expandvars(os.getenv("PG_URL", "sqlite:///./readsync.db"))
engine = create_db_engine(pg_url)
DbSession = sessionmaker(engine)


class Base(DeclarativeBase):
    def as_dict(self):
        return {
            c.key: getattr(self, c.key)
            for c in self.__mapper__.columns
            if not c.primary_key
        }


class ReadingProgress(Base):
    """The authoritative reading position of a user in a book. One row per (user_id, book_id)."""

    __tablename__ = "reading_progress"
    __table_args__ = (
        UniqueConstraint("user_id", "book_id", name="uq_reading_progress_user_book"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[str]
    book_id: Mapped[str]

    # Compressed position, stored the way devices send it.
    cfi: Mapped[str]
    percentage: Mapped[float] = mapped_column(default=0.0)
    page_number: Mapped[Optional[int]]
    chapter_id: Mapped[Optional[str]]

    # Epoch milliseconds of the capture on the device. Ordering key of the conflict resolution.
    updated_at: Mapped[int] = mapped_column(BigInteger)
    # Epoch milliseconds of the server clock, refreshed on every upsert attempt. Only used for the hot window.
    server_synced_at: Mapped[int] = mapped_column(BigInteger)
    device_id: Mapped[str]
    sync_version: Mapped[int] = mapped_column(default=1)
    last_opened_at: Mapped[Optional[int]] = mapped_column(BigInteger)
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True),
                                                          default=lambda: datetime.datetime.now(UTC))

    def __repr__(self) -> str:
        return (f"ReadingProgress(user_id={self.user_id}, book_id={self.book_id}, device_id={self.device_id}, "
                f"updated_at={self.updated_at}, sync_version={self.sync_version})")


Index("ik_reading_progress_user_updated", ReadingProgress.user_id, ReadingProgress.updated_at.desc())
Index("ik_reading_progress_user_synced", ReadingProgress.user_id, ReadingProgress.server_synced_at.desc())


class AccessToken(Base):
    __tablename__ = "access_tokens"

    # sha256 of the bearer token, the token itself is never stored.
    token_hash: Mapped[str] = mapped_column(primary_key=True)
    user_id: Mapped[str] = mapped_column(index=True)
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True),
                                                          default=lambda: datetime.datetime.now(UTC))
