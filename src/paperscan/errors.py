"""
Error taxonomy for the paper scanning pipeline.

Only TransportError and MalformedResponse ever reach callers; NotAPaper and
EmptyResult are raised internally and resolved to "nothing produced" by the
pipeline coordinator.
"""

from typing import Optional


class PaperScanError(Exception):
    """Base class for pipeline errors."""


class TransportError(PaperScanError):
    """Network or service failure while talking to a model provider."""

    def __init__(self, message: str, status_code: Optional[int] = None, body: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.body = body

    def __str__(self) -> str:
        base = super().__str__()
        if self.status_code is not None:
            return f"{base} (HTTP {self.status_code}): {self.body[:300]}"
        return base


class MalformedResponse(PaperScanError):
    """Model output that is not parseable JSON even after repair."""

    def __init__(self, message: str, raw: str = ""):
        super().__init__(message)
        self.raw = raw


class NotAPaper(PaperScanError):
    """The first photograph was judged not to be homework or an exam."""


class EmptyResult(PaperScanError):
    """No attempt produced a usable candidate."""
