import os
from typing import Optional

import requests

from sync_client import get_logger
from sync_client.errors import SyncRejectedError, SyncTransportError
from sync_client.models import LocalRecord
from sync_common.codec import compress
from sync_common.models.wire import PullRecord, PushRequest, PushResponse

LOG = get_logger(__name__)

# Responses that say "try again later" rather than "this request is wrong".
RETRYABLE_STATUS_CODES = {408, 425, 429}


class SyncClient:
    """HTTP client of the sync server."""

    def __init__(self,
                 base_url: str = None,
                 token: str = None,
                 session: requests.Session = None,
                 timeout: float = None):
        self.base_url = (base_url or os.getenv("SYNC_SERVER_URL", "http://localhost:8000")).rstrip("/")
        self.timeout = timeout if timeout is not None else float(os.getenv("SYNC_HTTP_TIMEOUT", 10))
        self.session = session or requests.Session()

        token = token or os.getenv("SYNC_AUTH_TOKEN")
        if token:
            self.session.headers["Authorization"] = f"Bearer {token}"

    def push(self, record: LocalRecord) -> PushResponse:
        request = PushRequest(user_id=record.user_id,
                              book_id=record.book_id,
                              cfi=compress(record.position),
                              percentage=record.percentage,
                              timestamp=record.updated_at,
                              device_id=record.device_id,
                              page_number=record.page_number,
                              chapter_id=record.chapter_id)
        response = self._request("POST", "/api/sync/progress", json=request.to_json())
        return PushResponse.model_validate(response.json())

    def pull(self, user_id: str, limit: int = 20, since: Optional[int] = None) -> list[PullRecord]:
        """Most recently server-updated records of the user. Positions are still compressed."""
        params = {"userId": user_id, "limit": limit}
        if since is not None:
            params["since"] = since
        response = self._request("GET", "/api/sync/all", params=params)
        return [PullRecord.model_validate(item) for item in response.json()]

    def get_progress(self, book_id: str) -> Optional[PullRecord]:
        try:
            response = self._request("GET", f"/api/sync/progress/{book_id}")
        except SyncRejectedError as e:
            if e.status_code == 404:
                return None
            raise
        return PullRecord.model_validate(response.json())

    def _request(self, method: str, path: str, **kwargs):
        url = f"{self.base_url}{path}"
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            raise SyncTransportError(f"{method} {path} failed: {e}") from e

        if response.status_code >= 500 or response.status_code in RETRYABLE_STATUS_CODES:
            raise SyncTransportError(f"{method} {path} failed with status {response.status_code}")
        if response.status_code >= 400:
            raise SyncRejectedError(response.status_code, _detail(response))
        return response


def _detail(response) -> str:
    try:
        return str(response.json().get("detail"))
    except (ValueError, AttributeError):
        return response.text
