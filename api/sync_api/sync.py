from typing import Annotated, Optional

from fastapi import APIRouter, HTTPException
from fastapi.params import Query

from sync_api import get_logger
from sync_api.auth import CurrentUserDep
from sync_api.services.progress import ProgressServiceDep, TimestampOutOfRangeError
from sync_common.models.wire import PullRecord, PushRequest, PushResponse

LOG = get_logger(__name__)

sync_router = APIRouter()


def _ensure_same_user(requested_user_id: str, user_id: str):
    if requested_user_id != user_id:
        LOG.warning("User %s tried to access progress of user %s", user_id, requested_user_id)
        raise HTTPException(status_code=403, detail="Cannot access progress of another user")


@sync_router.post("/progress", response_model_exclude_none=True)
def push_progress(request: PushRequest,
                  user_id: CurrentUserDep,
                  progress_service: ProgressServiceDep) -> PushResponse:
    _ensure_same_user(request.user_id, user_id)

    try:
        outcome = progress_service.upsert_progress(user_id,
                                                   request.book_id,
                                                   request.cfi,
                                                   request.percentage,
                                                   request.device_id,
                                                   request.timestamp,
                                                   request.page_number,
                                                   request.chapter_id)
    except TimestampOutOfRangeError as e:
        LOG.info("Rejected progress of %s/%s: %s", user_id, request.book_id, e)
        raise HTTPException(status_code=422, detail=str(e))

    return outcome.to_push_response()


@sync_router.get("/all")
def pull_progress(user_id: CurrentUserDep,
                  progress_service: ProgressServiceDep,
                  requested_user_id: Annotated[str, Query(alias="userId")],
                  limit: int = 20,
                  since: Annotated[Optional[int], Query()] = None) -> list[PullRecord]:
    _ensure_same_user(requested_user_id, user_id)

    return [progress_service.to_pull_record(p) for p in progress_service.get_recent(user_id, limit, since)]


@sync_router.get("/progress/{book_id}")
def get_progress(book_id: str, user_id: CurrentUserDep, progress_service: ProgressServiceDep) -> PullRecord:
    progress = progress_service.get_progress(user_id, book_id)
    if progress is None:
        raise HTTPException(status_code=404, detail="Progress not found")

    return progress_service.to_pull_record(progress)
