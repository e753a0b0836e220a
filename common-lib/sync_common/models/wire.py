from enum import StrEnum
from typing import Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Models sent by devices use camelCase keys. Python code uses the snake_case field names."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class PushRequest(CamelModel):
    user_id: str
    book_id: str

    # Compressed position.
    cfi: str
    percentage: float

    # Client side capture time, epoch milliseconds.
    timestamp: int
    device_id: str

    page_number: Optional[int] = None
    chapter_id: Optional[str] = None


class PushStatus(StrEnum):
    updated = "updated"
    ignored = "ignored"
    conflict = "conflict"


class ServerState(CamelModel):
    cfi: str
    percentage: float
    timestamp: int
    device_id: str


class PushResponse(CamelModel):
    status: PushStatus
    reason: Optional[str] = None
    server_state: Optional[ServerState] = None


class PullRecord(BaseModel):
    book_id: str
    cfi: str
    percentage: float
    timestamp: int
    device_id: str
    page_number: Optional[int] = None
    chapter_id: Optional[str] = None


class UpsertRequest(CamelModel):
    """Arguments of the resolver entry point. The user is taken from the authenticated session."""

    book_id: str
    cfi: str
    percentage: float
    device_id: str
    updated_at: int
    page_number: Optional[int] = None
    chapter_id: Optional[str] = None


class ProgressRecord(BaseModel):
    user_id: str
    book_id: str
    cfi: str
    percentage: float
    page_number: Optional[int] = None
    chapter_id: Optional[str] = None
    device_id: str
    updated_at: int
    server_synced_at: int
    sync_version: int
    last_opened_at: Optional[int] = None


class UpsertResult(BaseModel):
    updated: bool
    conflict: bool
    data: ProgressRecord
