from __future__ import annotations

from collections import Counter
from typing import Dict

from prometheus_client import Counter as PromCounter

# Policy decisions: "<model>|<operation>|<outcome>"
_DECISIONS = Counter()

# Named counters (rollbacks, validation failures, ...)
_NAMED = Counter()

_PROM_DECISIONS = PromCounter(
    "schemaguard_policy_decisions_total",
    "Access-policy decisions taken by the enforcement layer",
    ["model", "operation", "outcome"],
)


def reset_metrics() -> None:
    """
    Test helper: clears the in-process counters to avoid cross-test leakage.
    Prometheus counters are cumulative and are left alone.
    """
    _DECISIONS.clear()
    _NAMED.clear()


def inc_decision(model: str, operation: str, outcome: str) -> None:
    _DECISIONS["decisions_total"] += 1
    _DECISIONS[f"{model}|{operation}|{outcome}"] += 1
    _PROM_DECISIONS.labels(model=model, operation=operation, outcome=outcome).inc()


def inc_named(name: str, value: int = 1) -> None:
    if not name:
        return
    _NAMED[name] += int(value)


def snapshot_decisions() -> Dict[str, int]:
    return dict(_DECISIONS)


def snapshot_named() -> Dict[str, int]:
    return dict(_NAMED)
