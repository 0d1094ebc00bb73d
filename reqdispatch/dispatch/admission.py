"""Admission policy: decides what enqueueing a request does to the queue.

Evaluated against a snapshot of the execution queue taken under the
dispatcher lock:

  - PLAIN: admit, touch nothing
  - CANCEL_IF_SAME_KIND_EXISTS: reject the newcomer if any queued/running
    request shares its kind
  - CANCEL_EXISTING_OF_SAME_KIND: evict every same-kind request, then admit
  - CANCEL_EXISTING_EQUAL: evict every structurally equal request, then admit

The policy only looks at what is already queued; it never affects requests
admitted later.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field

from reqdispatch.dispatch.request import Request
from reqdispatch.dispatch.types import AdmissionDecision, QueuingBehaviour


@dataclass
class Admission:
    """Outcome of the policy check for one incoming request."""

    decision: AdmissionDecision
    evict: list[Request] = field(default_factory=list)

    @property
    def admitted(self) -> bool:
        return self.decision != AdmissionDecision.REJECT


def evaluate(request: Request, operations: Iterable[Request]) -> Admission:
    """Apply ``request.queuing_behaviour`` to the current queue contents."""
    behaviour = request.queuing_behaviour
    others = [op for op in operations if op is not request and not op.is_cancelled]

    if behaviour == QueuingBehaviour.CANCEL_IF_SAME_KIND_EXISTS:
        if any(op.is_same_kind(request) for op in others):
            return Admission(AdmissionDecision.REJECT)
        return Admission(AdmissionDecision.ADMIT)

    if behaviour == QueuingBehaviour.CANCEL_EXISTING_OF_SAME_KIND:
        matches = [op for op in others if op.is_same_kind(request)]
    elif behaviour == QueuingBehaviour.CANCEL_EXISTING_EQUAL:
        matches = [op for op in others if op == request]
    else:
        matches = []

    if matches:
        return Admission(AdmissionDecision.EVICT_THEN_ADMIT, evict=matches)
    return Admission(AdmissionDecision.ADMIT)
