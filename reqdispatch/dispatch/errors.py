"""Outcome error taxonomy.

None of these are raised out of ``Dispatcher.enqueue``; they travel as
``RequestOutcome.error`` through the response queue.
"""

from __future__ import annotations

import httpx


class DispatchError(Exception):
    """Base class for dispatch outcome errors."""


class RejectedByPolicy(DispatchError):
    """The request never ran: a request of the same kind was already queued or running."""

    def __init__(self, kind: str):
        super().__init__(f"Rejected: a {kind} request is already queued or running")
        self.kind = kind


class CancelledInFlight(DispatchError):
    """The request was cancelled while queued or running."""

    def __init__(self, message: str = "Request cancelled", reason: str = "cancelled"):
        super().__init__(message)
        self.reason = reason


class TransportFailure(DispatchError):
    """The transport exchange failed. Passed through unchanged to response handling."""

    def __init__(self, message: str, status_code: int = 0, response: httpx.Response | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.response = response


class RequestReuseError(RuntimeError):
    """A request was enqueued after it had already been enqueued once."""
