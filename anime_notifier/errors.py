"""
Classified failures raised by the schedule sync and notification pipeline.

Every failure that leaves the core is a ``NotifierError`` carrying an
``ErrorKind`` tag, so callers can branch on ``err.kind`` instead of probing
exception types. The underlying exception is chained via ``raise ... from``.
"""

from enum import Enum
from typing import List


class ErrorKind(str, Enum):
    FETCH = "fetch"
    DECODE = "decode"
    STORE = "store"
    PUBLISH = "publish"


class NotifierError(RuntimeError):
    """Base class for classified pipeline failures."""

    kind: ErrorKind

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def chain(self) -> List[str]:
        """Messages of this error and every chained cause, outermost first."""
        messages = []
        current: BaseException | None = self
        while current is not None:
            messages.append(f"{type(current).__name__}: {current}")
            current = current.__cause__ or current.__context__
        return messages


class FetchError(NotifierError):
    """Schedule provider unreachable or answered with a non-200 status."""
    kind = ErrorKind.FETCH


class DecodeError(NotifierError):
    """Schedule payload could not be decoded into schedule entries."""
    kind = ErrorKind.DECODE


class StoreError(NotifierError):
    """Transaction begin/exec/commit failure; the transaction was rolled back."""
    kind = ErrorKind.STORE


class PublishError(NotifierError):
    """Message bus rejected or never received a notification."""
    kind = ErrorKind.PUBLISH
