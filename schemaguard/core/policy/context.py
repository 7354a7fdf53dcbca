from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any, Mapping, Optional


def _frozen(record: Optional[Mapping[str, Any]]) -> Optional[Mapping[str, Any]]:
    if record is None or isinstance(record, MappingProxyType):
        return record
    return MappingProxyType(dict(record))


@dataclass(frozen=True)
class EvaluationContext:
    """Input of one evaluation. Records are read-only views."""

    model: str
    record: Mapping[str, Any]
    principal: Any = None
    now: Optional[datetime] = None
    # pre-update state, set for post-update checks only
    before: Optional[Mapping[str, Any]] = None

    @classmethod
    def build(
        cls,
        model: str,
        record: Optional[Mapping[str, Any]],
        principal: Any = None,
        *,
        now: Optional[datetime] = None,
        before: Optional[Mapping[str, Any]] = None,
    ) -> "EvaluationContext":
        return cls(
            model=model,
            record=_frozen(record or {}),
            principal=principal,
            now=now or datetime.now(timezone.utc),
            before=_frozen(before),
        )

    def rebind(self, model: str, record: Mapping[str, Any]) -> "EvaluationContext":
        """Same principal and clock, scoped to a related record."""
        return replace(self, model=model, record=_frozen(record))
