"""Core types for the request dispatch layer."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

import httpx


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class QueuingBehaviour(str, Enum):
    """Admission policy a request declares for itself."""

    PLAIN = "plain"
    CANCEL_IF_SAME_KIND_EXISTS = "cancel_if_same_kind_exists"  # Reject newcomer
    CANCEL_EXISTING_OF_SAME_KIND = "cancel_existing_of_same_kind"  # Evict older same-kind requests
    CANCEL_EXISTING_EQUAL = "cancel_existing_equal"  # Evict structurally equal requests


class RequestState(str, Enum):
    """Lifecycle of a request."""

    PENDING = "pending"  # Built by the caller, not yet enqueued
    QUEUED = "queued"  # Admitted, waiting for a worker slot or a resume
    RUNNING = "running"  # Transport exchange in progress
    PROCESSING = "processing"  # Handed to the response queue
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (RequestState.SUCCEEDED, RequestState.FAILED, RequestState.CANCELLED)


class OutcomeStatus(str, Enum):
    """How a request ended, as seen by its completion callback."""

    SUCCESS = "success"
    CANCELLED = "cancelled"
    FAILED = "failed"


class FlowState(str, Enum):
    """Pause/resume state driven by the authenticator."""

    RUNNING = "running"
    PAUSED = "paused"


class AdmissionDecision(str, Enum):
    """Result of evaluating a request's queuing behaviour."""

    ADMIT = "admit"
    EVICT_THEN_ADMIT = "evict_then_admit"
    REJECT = "reject"


# ---------------------------------------------------------------------------
# Outcome, delivered through the response queue
# ---------------------------------------------------------------------------


@dataclass
class RequestOutcome:
    """Final result of a request.

    Success, cancellation and failure all arrive through this one type so
    callers handle them uniformly.
    """

    status: OutcomeStatus
    response: httpx.Response | None = None
    data: Any = None
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.status == OutcomeStatus.SUCCESS

    @property
    def cancelled(self) -> bool:
        return self.status == OutcomeStatus.CANCELLED

    @classmethod
    def success(cls, response: httpx.Response, data: Any = None) -> RequestOutcome:
        return cls(status=OutcomeStatus.SUCCESS, response=response, data=data)

    @classmethod
    def cancellation(cls, error: Exception) -> RequestOutcome:
        return cls(status=OutcomeStatus.CANCELLED, error=error)

    @classmethod
    def failure(cls, error: Exception, response: httpx.Response | None = None) -> RequestOutcome:
        return cls(status=OutcomeStatus.FAILED, response=response, error=error)

    def to_dict(self) -> dict:
        """Serialize the outcome summary for logs and status reports."""
        return {
            "status": self.status.value,
            "status_code": self.response.status_code if self.response is not None else None,
            "error": type(self.error).__name__ if self.error else None,
            "error_message": str(self.error) if self.error else "",
        }
