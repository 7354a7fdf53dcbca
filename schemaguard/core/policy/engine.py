from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Mapping, Optional

from schemaguard.core.client.base import TRUE_FILTER
from schemaguard.core.compiler.policy_models import CompiledSchema, Operation
from schemaguard.core.config import EnforcementConfig
from schemaguard.core.errors import PolicyViolation
from schemaguard.core.observability.audit import audit_decision
from schemaguard.core.observability.metrics import inc_decision

from .context import EvaluationContext
from .decision import Decision, decide, decide_field
from .evaluator import ExpressionEvaluator, identity_of
from .filters import Filter, FilterBuilder

_log = logging.getLogger("schemaguard.enforcement")


class PolicyEngine:
    """Per-principal view of a compiled schema: decisions, row filters, field rules."""

    def __init__(
        self,
        schema: CompiledSchema,
        client: Any,
        principal: Any = None,
        *,
        config: EnforcementConfig,
        now: Optional[datetime] = None,
    ):
        self.schema = schema
        self.principal = principal
        self.config = config
        self._fixed_now = now
        self.evaluator = ExpressionEvaluator(schema, client)
        self.filters = FilterBuilder(schema, self.evaluator)

    @property
    def principal_id(self) -> Any:
        return identity_of(self.principal, self.schema.auth_id_field)

    def now(self) -> datetime:
        return self._fixed_now or datetime.now(timezone.utc)

    def context(
        self,
        model: str,
        record: Optional[Mapping[str, Any]] = None,
        *,
        before: Optional[Mapping[str, Any]] = None,
    ) -> EvaluationContext:
        return EvaluationContext.build(model, record, self.principal, now=self.now(), before=before)

    # --- decisions ---

    def check(
        self,
        model: str,
        op: Operation,
        record: Mapping[str, Any],
        *,
        before: Optional[Mapping[str, Any]] = None,
    ) -> Decision:
        ctx = self.context(model, record, before=before)
        decision = decide(self.schema.model(model), op, lambda expr: self.evaluator.evaluate(expr, ctx))
        self.record(model, op.value, decision.outcome, rule=decision.rule.source if decision.rule else None)
        return decision

    def require(
        self,
        model: str,
        op: Operation,
        record: Mapping[str, Any],
        *,
        before: Optional[Mapping[str, Any]] = None,
    ) -> None:
        decision = self.check(model, op, record, before=before)
        if not decision.allowed:
            _log.warning("Denied %s on %s: %s", op.value, model, decision.reason)
            raise PolicyViolation(model=model, operation=op.value, reason=decision.reason)

    def field_allowed(self, model: str, field: str, op: Operation, record: Mapping[str, Any]) -> bool:
        rules = self.schema.model(model).field_rules_for(field, op)
        if not rules:
            return True
        ctx = self.context(model, record)
        allowed = decide_field(rules, lambda expr: self.evaluator.evaluate(expr, ctx))
        if not allowed:
            self.record(model, op.value, "deny", field=field)
        return allowed

    def filter_for(self, model: str, op: Operation) -> Filter:
        where = self.filters.for_operation(model, op, self.context(model))
        _log.debug("Row filter for %s on %s: %s", op.value, model, where)
        return where

    def field_filter(self, model: str, field: str, op: Operation) -> Filter:
        """Rows of `model` on which the field rules let `field` through for `op`."""
        rules = self.schema.model(model).field_rules_for(field, op)
        if not rules:
            return dict(TRUE_FILTER)
        return self.filters.for_field_rules(rules, self.context(model))

    # --- observability ---

    def record(
        self,
        model: str,
        operation: str,
        outcome: str,
        *,
        rule: Optional[str] = None,
        field: Optional[str] = None,
    ) -> None:
        if self.config.metrics_enabled:
            inc_decision(model, operation, outcome)
        if self.config.audit_enabled:
            audit_decision(
                model,
                operation,
                outcome,
                self.principal_id,
                rule=rule,
                field=field,
                audit_path=self.config.audit_path,
            )
        _log.debug("%s %s on %s (rule=%s)", outcome, operation, model, rule)
