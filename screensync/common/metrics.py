"""
Business metrics for reconciliation, uploads and platform calls.

HTTP-level metrics live in the server middleware; these counters are
recorded from the engine, worker and client so they are independent of
the web layer.
"""

from prometheus_client import Counter, Histogram

PLATFORM_CALLS_TOTAL = Counter(
    "screensync_platform_calls_total",
    "Remote platform API calls",
    ["method", "outcome"],
)

PLATFORM_CALL_DURATION = Histogram(
    "screensync_platform_call_duration_seconds",
    "Remote platform API call duration",
    ["method"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 15.0),
)

RECONCILE_TOTAL = Counter(
    "screensync_reconcile_total",
    "Screen reconciliations by outcome",
    ["outcome", "step", "code"],
)

RECONCILE_DURATION = Histogram(
    "screensync_reconcile_duration_seconds",
    "Screen reconciliation duration",
    buckets=(0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0),
)

SELF_HEAL_TOTAL = Counter(
    "screensync_self_heal_total",
    "Self-heal runs after a forbidden source type was observed",
    ["result"],
)

UPLOAD_TRANSITIONS_TOTAL = Counter(
    "screensync_upload_transitions_total",
    "Upload job state transitions",
    ["from_status", "to_status"],
)

PUBLISH_TOTAL = Counter(
    "screensync_publish_total",
    "Publish runs by mode and outcome",
    ["mode", "outcome"],
)


def record_platform_call(method: str, outcome: str, duration_s: float) -> None:
    """Record one remote call (outcome is "ok" or an error code)."""
    PLATFORM_CALLS_TOTAL.labels(method=method, outcome=outcome).inc()
    PLATFORM_CALL_DURATION.labels(method=method).observe(duration_s)


def record_reconcile(ok: bool, step: str | None, code: str | None, duration_s: float) -> None:
    """Record a reconciliation outcome."""
    RECONCILE_TOTAL.labels(
        outcome="ok" if ok else "failed",
        step=step or "",
        code=code or "",
    ).inc()
    RECONCILE_DURATION.observe(duration_s)


def record_self_heal(healed: bool) -> None:
    SELF_HEAL_TOTAL.labels(result="healed" if healed else "failed").inc()


def record_upload_transition(from_status: str, to_status: str) -> None:
    UPLOAD_TRANSITIONS_TOTAL.labels(from_status=from_status, to_status=to_status).inc()


def record_publish(mode: str, ok: bool) -> None:
    PUBLISH_TOTAL.labels(mode=mode, outcome="ok" if ok else "failed").inc()
