"""Client-side request dispatch layer.

Typed requests go through an admission policy, run on a bounded execution
queue against an HTTP transport, and have their responses handled on a
separate serialized queue.
"""

from reqdispatch.dispatch import (
    Authenticator,
    BearerTokenAuthenticator,
    Dispatcher,
    FlowState,
    HttpTransport,
    QueuingBehaviour,
    Request,
    RequestOutcome,
    RetryPolicy,
)

__all__ = [
    "Authenticator",
    "BearerTokenAuthenticator",
    "Dispatcher",
    "FlowState",
    "HttpTransport",
    "QueuingBehaviour",
    "Request",
    "RequestOutcome",
    "RetryPolicy",
]
