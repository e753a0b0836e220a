class SyncError(Exception):
    pass


class SyncTransportError(SyncError):
    """The server could not be reached or failed. The same request may succeed later."""


class SyncRejectedError(SyncError):
    """The server refused the request (authentication, validation). Retrying the same request fails again."""

    def __init__(self, status_code: int, detail: str):
        super().__init__(f"{status_code}: {detail}")
        self.status_code = status_code
        self.detail = detail


class LocalStoreError(Exception):
    pass
