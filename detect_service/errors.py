"""Error taxonomy for detection requests.

Each error maps to one HTTP status; the API layer renders them as
``{"error": message}``.
"""

from __future__ import annotations


class DetectionError(Exception):
    """Base class for all request-terminal detection errors."""

    status_code: int = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class InvalidInput(DetectionError):
    status_code = 400


class PayloadTooLarge(DetectionError):
    status_code = 400


class NotFound(DetectionError):
    status_code = 404


class Conflict(DetectionError):
    status_code = 409


class ServiceUnavailable(DetectionError):
    status_code = 500


class UpstreamError(DetectionError):
    status_code = 500


class PersistenceError(DetectionError):
    status_code = 500
