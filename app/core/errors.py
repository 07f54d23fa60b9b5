"""
Domain Errors

Business-rule failures raised by the service layer. The API layer turns
them into ``{"success": false, "error": message}`` responses with the
carried status code.
"""

from typing import Optional


class POSError(Exception):
    """Base error for rejected business operations."""

    status_code: int = 400

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self) -> dict:
        return {"success": False, "error": self.message}


class ValidationError(POSError):
    status_code = 400


class NotFoundError(POSError):
    status_code = 404


class ConflictError(POSError):
    status_code = 409
