"""
Errors raised by the device-side sync engine.
"""
from typing import Any, Optional


class SyncError(Exception):
    """An operation that cannot be sent as queued (missing payload / id, unsupported)."""


class ApiError(Exception):
    """The server answered with a status >= 400."""

    def __init__(self, status_code: int, detail: Any = None, method: Optional[str] = None, path: Optional[str] = None):
        self.status_code = status_code
        self.detail = detail
        self.method = method
        self.path = path
        where = f" {method} {path}" if method and path else ""
        super().__init__(f"HTTP {status_code}{where}: {detail}")

    @property
    def is_client_error(self) -> bool:
        return 400 <= self.status_code < 500
