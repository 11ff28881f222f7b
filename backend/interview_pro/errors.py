from __future__ import annotations


class ApiError(Exception):
    """Raised by handlers; rendered as ``{"success": false, "message": ...}``."""

    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.message = message
