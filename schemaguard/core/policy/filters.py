"""
Translation of access conditions into where filters.

Every part of a condition that does not depend on the record (principal
lookups, literals, now()) is evaluated up front and folded into a constant, so
the resulting filter only compares record fields with values. The translated
filter selects exactly the rows for which the evaluator returns True.
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence, Tuple

from schemaguard.core.client.base import FALSE_FILTER, TRUE_FILTER, and_filters, not_filter, or_filters
from schemaguard.core.compiler.policy_models import (
    CompiledModel,
    CompiledSchema,
    Effect,
    FieldInfo,
    FieldRule,
    Operation,
    PolicyRule,
)
from schemaguard.core.errors import EvaluationError
from schemaguard.core.schema import expressions as ex

from .context import EvaluationContext
from .evaluator import Entity, ExpressionEvaluator, identity_of, value_category

_OPERATORS = {"==": "equals", "!=": "not", "<": "lt", "<=": "lte", ">": "gt", ">=": "gte"}
_FLIPPED = {"==": "==", "!=": "!=", "<": ">", "<=": ">=", ">": "<", ">=": "<="}
_QUANTIFIERS = {ex.SOME: "some", ex.EVERY: "every", ex.NONE: "none"}

_FIELD_CATEGORY = {
    "String": "String",
    "Int": "Number",
    "Float": "Number",
    "Boolean": "Boolean",
    "DateTime": "DateTime",
}

Filter = Dict[str, Any]


def _true() -> Filter:
    return dict(TRUE_FILTER)


def _false() -> Filter:
    return dict(FALSE_FILTER)


class FilterBuilder:
    def __init__(self, schema: CompiledSchema, evaluator: ExpressionEvaluator):
        self.schema = schema
        self.evaluator = evaluator

    def for_operation(self, model: str, op: Operation, ctx: EvaluationContext) -> Filter:
        """Rows of `model` on which `op` is allowed (allow rules OR-ed, deny rules negated)."""
        m = self.schema.model(model)
        return self.for_rules(m.rules_for(op, Effect.ALLOW), m.rules_for(op, Effect.DENY), ctx.rebind(model, {}))

    def for_rules(
        self,
        allows: Sequence[PolicyRule],
        denies: Sequence[PolicyRule],
        ctx: EvaluationContext,
    ) -> Filter:
        if not allows:
            return _false()
        parts = [not_filter(self.translate(r.expression, ctx)) for r in denies]
        allowed = or_filters(*[self.translate(r.expression, ctx) for r in allows])
        return and_filters(*parts, allowed)

    def for_field_rules(self, rules: Sequence[FieldRule], ctx: EvaluationContext) -> Filter:
        """Rows on which a field is visible: no deny holds, and some allow holds when any exist."""
        denies = [not_filter(self.translate(r.expression, ctx)) for r in rules if r.effect == Effect.DENY]
        allows = [self.translate(r.expression, ctx) for r in rules if r.effect == Effect.ALLOW]
        return and_filters(*denies, or_filters(*allows) if allows else None)

    # --- translation ---

    def translate(self, expr: ex.Expr, ctx: EvaluationContext) -> Filter:
        if not ex.references_record(expr):
            return _true() if self.evaluator.evaluate(expr, ctx) else _false()

        if isinstance(expr, ex.Binary) and expr.op == "&&":
            return and_filters(self.translate(expr.left, ctx), self.translate(expr.right, ctx))
        if isinstance(expr, ex.Binary) and expr.op == "||":
            return or_filters(self.translate(expr.left, ctx), self.translate(expr.right, ctx))
        if isinstance(expr, ex.Unary):
            return not_filter(self.translate(expr.operand, ctx))
        if isinstance(expr, ex.CollectionPredicate):
            return self._collection(expr, ctx)
        if isinstance(expr, ex.Call) and expr.name in ("contains", "startsWith", "endsWith"):
            return self._text(expr, ctx)
        if isinstance(expr, ex.Binary) and expr.op == "in":
            return self._membership(expr, ctx)
        if isinstance(expr, ex.Binary):
            return self._comparison(expr, ctx)
        if isinstance(expr, (ex.FieldRef, ex.Member)):
            # boolean field used as a condition
            return self._compare_path(expr, "==", ex.Literal(True), True, ctx)
        raise EvaluationError(f"Cannot translate {type(expr).__name__} into a filter", model=ctx.model)

    # --- paths ---

    def _steps(self, path: ex.Expr) -> List[str]:
        if isinstance(path, ex.This):
            return []
        if isinstance(path, ex.FieldRef):
            return [path.name]
        if isinstance(path, ex.Member):
            return self._steps(path.target) + [path.name]
        raise EvaluationError(f"Not a field path: {ex.to_source(path)}")

    def _resolve(self, model: str, steps: List[str]) -> List[Tuple[CompiledModel, FieldInfo]]:
        """(owning model, field) for every step of a path."""
        out: List[Tuple[CompiledModel, FieldInfo]] = []
        scope = self.schema.model(model)
        for name in steps:
            info = scope.get_field(name)
            if info is None:
                raise EvaluationError(f"Unknown field {scope.name}.{name}", model=scope.name)
            out.append((scope, info))
            if info.is_relation:
                scope = self.schema.model(info.relation.target)
        return out

    @staticmethod
    def _wrap(prefix: List[Tuple[CompiledModel, FieldInfo]], cond: Filter) -> Filter:
        for _, info in reversed(prefix):
            cond = {info.name: {"is": cond}}
        return cond

    # --- leaves ---

    def _null_test(self, owner: CompiledModel, info: Optional[FieldInfo], is_null: bool, leaf: bool) -> Filter:
        if info is None:
            # `this` is always present
            return _false() if is_null else _true()
        if not info.is_relation:
            return {info.name: None} if is_null else {info.name: {"not": None}}
        rel = info.relation
        if leaf and rel.owning:
            tests = [{k: None} if is_null else {k: {"not": None}} for k in rel.local_keys]
            return or_filters(*tests) if is_null else and_filters(*tests)
        return {info.name: {"is": None}} if is_null else {info.name: {"isNot": None}}

    def _identity_test(self, owner: CompiledModel, info: Optional[FieldInfo], op: str, ident: Any) -> Filter:
        operator = _OPERATORS[op]
        if info is None:
            return {owner.id_field: {operator: ident}}
        rel = info.relation
        target = self.schema.model(rel.target)
        if rel.owning and rel.remote_keys == (target.id_field,):
            return {rel.local_keys[0]: {operator: ident}}
        inner = {target.id_field: {"equals": ident}}
        return {info.name: {"is" if op == "==" else "isNot": inner}}

    def _scalar_test(self, owner: CompiledModel, info: FieldInfo, op: str, value: Any) -> Filter:
        expected = "String" if info.kind == "enum" else _FIELD_CATEGORY.get(info.type_name)
        if expected is not None and value_category(value) != expected:
            raise EvaluationError(
                f"Cannot compare {owner.name}.{info.name} with a {value_category(value)} value",
                model=owner.name,
                field=info.name,
            )
        return {info.name: {_OPERATORS[op]: value}}

    def _compare_path(self, path: ex.Expr, op: str, other: ex.Expr, value: Any, ctx: EvaluationContext) -> Filter:
        resolved = self._resolve(ctx.model, self._steps(path))
        if resolved:
            owner, leaf = resolved[-1]
        else:
            owner, leaf = self.schema.model(ctx.model), None
        prefix = resolved[:-1]

        if op in ("==", "!=") and ex.is_null_literal(other):
            if op == "!=":
                return self._wrap(prefix, self._null_test(owner, leaf, False, True))
            # absent when any step of the path is absent
            tests = [self._wrap(prefix[:i], self._null_test(m, f, True, False)) for i, (m, f) in enumerate(prefix)]
            tests.append(self._wrap(prefix, self._null_test(owner, leaf, True, True)))
            return or_filters(*tests)

        if value is None and op == "!=" and ctx.principal is None and ex.is_principal_call(other):
            return self._wrap(prefix, self._null_test(owner, leaf, False, True))
        if value is None or (isinstance(value, Entity) and value.identity is None):
            return _false()

        if leaf is None or leaf.is_relation:
            ident = identity_of(value, owner.id_field if leaf is None else self.schema.model(leaf.type_name).id_field)
            if ident is None:
                return _false()
            return self._wrap(prefix, self._identity_test(owner, leaf, op, ident))
        return self._wrap(prefix, self._scalar_test(owner, leaf, op, value))

    # --- node kinds ---

    def _comparison(self, expr: ex.Binary, ctx: EvaluationContext) -> Filter:
        left, right, op = expr.left, expr.right, expr.op
        l_dep, r_dep = ex.references_record(left), ex.references_record(right)

        if l_dep and r_dep:
            if not (isinstance(left, ex.FieldRef) and isinstance(right, ex.FieldRef)):
                raise EvaluationError("Comparison of two record paths cannot be filtered", model=ctx.model)
            return {left.name: {_OPERATORS[op]: {"$field": right.name}}}

        if r_dep:
            left, right, op = right, left, _FLIPPED[op]
        value = None if ex.is_null_literal(right) else self.evaluator.value_of(right, ctx)
        return self._compare_path(left, op, right, value, ctx)

    def _membership(self, expr: ex.Binary, ctx: EvaluationContext) -> Filter:
        values = [v for v in self.evaluator.value_of(expr.right, ctx) if v is not None]
        if not values:
            return _false()
        resolved = self._resolve(ctx.model, self._steps(expr.left))
        if resolved and not resolved[-1][1].is_relation:
            owner, leaf = resolved[-1]
            for v in values:
                self._scalar_test(owner, leaf, "==", v)
            return self._wrap(resolved[:-1], {leaf.name: {"in": values}})
        return or_filters(*[self._compare_path(expr.left, "==", expr.right, v, ctx) for v in values])

    def _text(self, expr: ex.Call, ctx: EvaluationContext) -> Filter:
        text = self.evaluator.value_of(expr.args[1], ctx)
        if text is None:
            return _false()
        resolved = self._resolve(ctx.model, self._steps(expr.args[0]))
        owner, leaf = resolved[-1]
        if not isinstance(text, str):
            raise EvaluationError(f"{expr.name}() expects a string", model=owner.name, field=leaf.name)
        cond: Filter = {expr.name: text}
        if len(expr.args) > 2 and self.evaluator.value_of(expr.args[2], ctx):
            cond["mode"] = "insensitive"
        return self._wrap(resolved[:-1], {leaf.name: cond})

    def _collection(self, expr: ex.CollectionPredicate, ctx: EvaluationContext) -> Filter:
        resolved = self._resolve(ctx.model, self._steps(expr.target))
        _, leaf = resolved[-1]
        inner = self.translate(expr.predicate, ctx.rebind(leaf.relation.target, {}))
        return self._wrap(resolved[:-1], {leaf.name: {_QUANTIFIERS[expr.quantifier]: inner}})
