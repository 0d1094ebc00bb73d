"""Request dispatch engine.

Provides the pieces between application code and the HTTP transport:
  - Request variants with a kind tag and a queuing behaviour
  - Admission policy (reject / evict-then-admit / admit)
  - Execution Queue (bounded concurrency, suspendable)
  - Response-Processing Queue (one ordered worker thread)
  - Authenticator pause/resume
  - Default httpx transport with retry interceptor
"""

from reqdispatch.dispatch.auth import Authenticator, BearerTokenAuthenticator, RequestFlowControl
from reqdispatch.dispatch.dispatcher import Dispatcher
from reqdispatch.dispatch.errors import (
    CancelledInFlight,
    DispatchError,
    RejectedByPolicy,
    RequestReuseError,
    TransportFailure,
)
from reqdispatch.dispatch.request import Request
from reqdispatch.dispatch.retry import RetryPolicy
from reqdispatch.dispatch.transport import HttpTransport, Interceptor, Transport
from reqdispatch.dispatch.types import (
    FlowState,
    OutcomeStatus,
    QueuingBehaviour,
    RequestOutcome,
    RequestState,
)

__all__ = [
    "Authenticator",
    "BearerTokenAuthenticator",
    "CancelledInFlight",
    "DispatchError",
    "Dispatcher",
    "FlowState",
    "HttpTransport",
    "Interceptor",
    "OutcomeStatus",
    "QueuingBehaviour",
    "RejectedByPolicy",
    "Request",
    "RequestFlowControl",
    "RequestOutcome",
    "RequestReuseError",
    "RequestState",
    "RetryPolicy",
    "Transport",
    "TransportFailure",
]
