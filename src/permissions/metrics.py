"""Prometheus metrics for the permission engine.

2 metrics:
1. permission_decisions_total{module, action, outcome}  - resolver decisions
2. permission_store_writes_total{scope, operation}      - admin writes

outcome is one of: allow, deny, locked, user_deny.
"""

from __future__ import annotations

from prometheus_client import CollectorRegistry, Counter


def _counter(
    name: str,
    documentation: str,
    labelnames: list[str],
    registry: CollectorRegistry | None,
) -> Counter:
    """Create a Counter with optional registry."""
    if registry is not None:
        return Counter(name, documentation, labelnames, registry=registry)
    return Counter(name, documentation, labelnames)


class PermissionMetrics:
    """Central registry for permission engine metrics.

    Pass a custom CollectorRegistry for testing isolation.
    In production, use the default global registry (registry=None) and
    create exactly one instance in the composition root.
    """

    def __init__(self, *, registry: CollectorRegistry | None = None) -> None:
        self.decisions = _counter(
            "permission_decisions_total",
            "Permission resolver decisions",
            ["module", "action", "outcome"],
            registry,
        )
        self.store_writes = _counter(
            "permission_store_writes_total",
            "Writes to permission stores",
            ["scope", "operation"],
            registry,
        )

    def record_decision(self, *, module: str, action: str, outcome: str) -> None:
        self.decisions.labels(module=module, action=action, outcome=outcome).inc()

    def record_write(self, *, scope: str, operation: str) -> None:
        self.store_writes.labels(scope=scope, operation=operation).inc()
