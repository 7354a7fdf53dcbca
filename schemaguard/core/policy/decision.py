from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional, Sequence

from schemaguard.core.compiler.policy_models import CompiledModel, Effect, FieldRule, Operation, PolicyRule

Check = Callable[[object], bool]


@dataclass(frozen=True)
class Decision:
    allowed: bool
    reason: str
    rule: Optional[PolicyRule] = None

    @property
    def outcome(self) -> str:
        return "allow" if self.allowed else "deny"


def decide(model: CompiledModel, op: Operation, check: Check) -> Decision:
    """
    Deny rules first: any that holds denies. Then allow rules: any that holds
    allows. Otherwise the operation is denied. Post-update is the only
    operation that passes when no allow rule targets it.
    """
    for rule in model.rules_for(op, Effect.DENY):
        if check(rule.expression):
            return Decision(False, "denied by policy", rule)

    allows = model.rules_for(op, Effect.ALLOW)
    if not allows:
        if op == Operation.POST_UPDATE:
            return Decision(True, "no post-update rule")
        return Decision(False, "no rule allows this operation")

    for rule in allows:
        if check(rule.expression):
            return Decision(True, "allowed", rule)
    return Decision(False, "no rule allows this operation")


def decide_field(rules: Sequence[FieldRule], check: Check) -> bool:
    """Field rules: a holding deny wins; with no allow rule the field is open."""
    if any(check(r.expression) for r in rules if r.effect == Effect.DENY):
        return False
    allows = [r for r in rules if r.effect == Effect.ALLOW]
    if not allows:
        return True
    return any(check(r.expression) for r in allows)
