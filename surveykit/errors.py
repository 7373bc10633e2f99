"""Failure kinds raised by the authoring and collection services.

Messages are meant for the caller. Store and stack details are logged where
the failure is caught and never copied into a message.
"""
from typing import Optional


class SurveyError(Exception):
    kind = "error"
    retryable = False

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class Unauthenticated(SurveyError):
    kind = "unauthenticated"


class Forbidden(SurveyError):
    kind = "forbidden"


class NotFound(SurveyError):
    kind = "not_found"


class InvalidInput(SurveyError):
    kind = "invalid_input"

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class Conflict(SurveyError):
    kind = "conflict"
    retryable = True


class StoreUnavailable(SurveyError):
    kind = "store_unavailable"
    retryable = True
