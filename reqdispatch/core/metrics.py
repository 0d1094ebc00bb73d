"""Prometheus metrics for the dispatch layer."""

from prometheus_client import Counter, Gauge

# --- Metrics ---

ADMISSION_DECISIONS = Counter(
    "dispatch_requests_total",
    "Admission decisions taken for enqueued requests",
    ["kind", "decision"],
)

REQUEST_OUTCOMES = Counter(
    "dispatch_outcomes_total",
    "Final outcomes delivered through the response queue",
    ["kind", "status"],
)

EVICTIONS = Counter(
    "dispatch_evictions_total",
    "Queued or running requests cancelled by a newer request's policy",
    ["kind"],
)

PAUSED = Gauge(
    "dispatch_paused",
    "1 while a dispatcher's execution queue is paused by its authenticator",
    ["dispatcher"],
)
