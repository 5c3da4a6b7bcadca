from __future__ import annotations

"""Prometheus metrics for the media access path.

Thin helpers so call sites stay one line and label sets stay consistent.
"""

from prometheus_client import Counter, Histogram

capabilities_issued_total = Counter(
    "media_capabilities_issued_total",
    "Number of media capabilities issued",
    labelnames=("kind", "grant"),
)
access_denied_total = Counter(
    "media_access_denied_total",
    "Number of media access denials",
    labelnames=("reason",),
)
issuance_failures_total = Counter(
    "media_issuance_failures_total",
    "Capability issuance failures",
    labelnames=("kind",),
)
provider_latency = Histogram(
    "media_provider_call_seconds",
    "Latency for presign / stream token provider calls",
    labelnames=("provider", "result"),
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0),
)
bindings_verified_total = Counter(
    "media_bindings_verified_total",
    "Binding token verifications",
    labelnames=("result",),
)
audit_sink_failures_total = Counter(
    "audit_sink_failures_total",
    "Audit writer failures (swallowed)",
    labelnames=("writer",),
)
limiter_blocks_total = Counter(
    "limiter_blocks_total",
    "Total number of application-level limiter blocks",
)


def inc_capability_issued(kind: str, grant: str) -> None:
    capabilities_issued_total.labels(kind=kind, grant=grant).inc()


def inc_access_denied(reason: str) -> None:
    access_denied_total.labels(reason=reason).inc()


def inc_issuance_failure(kind: str) -> None:
    issuance_failures_total.labels(kind=kind).inc()


def observe_provider_seconds(provider: str, result: str, seconds: float) -> None:
    provider_latency.labels(provider=provider, result=result).observe(seconds)


def inc_binding_verified(result: str) -> None:
    bindings_verified_total.labels(result=result).inc()


def inc_audit_failure(writer: str) -> None:
    audit_sink_failures_total.labels(writer=writer).inc()


def inc_limiter_block() -> None:
    limiter_blocks_total.inc()


__all__ = [
    "inc_capability_issued",
    "inc_access_denied",
    "inc_issuance_failure",
    "observe_provider_seconds",
    "inc_binding_verified",
    "inc_audit_failure",
    "inc_limiter_block",
    "audit_sink_failures_total",
]
