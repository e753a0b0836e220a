from fastapi import APIRouter, HTTPException

from sync_api.auth import CurrentUserDep
from sync_api.services.progress import ProgressServiceDep, TimestampOutOfRangeError
from sync_common.models.wire import UpsertRequest, UpsertResult

rpc_router = APIRouter(tags=["RPC"])


@rpc_router.post("/upsert_reading_progress")
def upsert_reading_progress(request: UpsertRequest,
                            user_id: CurrentUserDep,
                            progress_service: ProgressServiceDep) -> UpsertResult:
    """Conflict-aware upsert. Returns whether the write was applied and the resulting state of the record."""
    try:
        outcome = progress_service.upsert_progress(user_id,
                                                   request.book_id,
                                                   request.cfi,
                                                   request.percentage,
                                                   request.device_id,
                                                   request.updated_at,
                                                   request.page_number,
                                                   request.chapter_id)
    except TimestampOutOfRangeError as e:
        raise HTTPException(status_code=422, detail=str(e))

    return outcome.to_result()
