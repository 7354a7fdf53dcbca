"""
Evaluation of compiled conditions against one record.

Evaluation is read-only and short-circuits left to right. Values that are
absent (null fields, missing relations, no principal) make every comparison
false, except a comparison with the `null` literal, which tests presence.
Related records are loaded through the raw data client, or taken from the
record when it already carries them (includes).
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Callable, List, Mapping, Optional

from schemaguard.core.compiler.policy_models import CompiledSchema, FieldInfo
from schemaguard.core.errors import EvaluationError
from schemaguard.core.schema import expressions as ex

from .context import EvaluationContext

_UNSET = object()


def read_attr(obj: Any, name: str) -> Any:
    if obj is None:
        return None
    if isinstance(obj, Mapping):
        return obj.get(name)
    return getattr(obj, name, None)


class Entity:
    """A record reached through a relation, `this` or the principal.

    Equality between entities is identity equality. The record itself is only
    loaded when a member of it is accessed.
    """

    __slots__ = ("model", "id_field", "_record", "_identity", "_loader")

    def __init__(
        self,
        model: Optional[str],
        id_field: str,
        *,
        record: Any = _UNSET,
        identity: Any = _UNSET,
        loader: Optional[Callable[[], Any]] = None,
    ):
        self.model = model
        self.id_field = id_field
        self._record = record
        self._identity = identity
        self._loader = loader

    @property
    def record(self) -> Any:
        if self._record is _UNSET:
            self._record = self._loader() if self._loader is not None else None
        return self._record

    @property
    def identity(self) -> Any:
        if self._identity is _UNSET:
            self._identity = read_attr(self.record, self.id_field)
        return self._identity


def identity_of(value: Any, id_field: str = "id") -> Any:
    if isinstance(value, Entity):
        return value.identity
    if isinstance(value, Mapping) or (value is not None and hasattr(value, id_field)):
        return read_attr(value, id_field)
    return value


def value_category(value: Any) -> str:
    if isinstance(value, bool):
        return "Boolean"
    if isinstance(value, (int, float)):
        return "Number"
    if isinstance(value, str):
        return "String"
    if isinstance(value, datetime):
        return "DateTime"
    if isinstance(value, Entity):
        return "Entity"
    return "Json"


class ExpressionEvaluator:
    def __init__(self, schema: CompiledSchema, client: Any = None):
        self.schema = schema
        self.client = client

    def evaluate(self, expr: ex.Expr, ctx: EvaluationContext) -> bool:
        value = self._eval(expr, ctx)
        if value is None:
            return False
        if not isinstance(value, bool):
            raise EvaluationError(
                f"Condition on {ctx.model} produced {type(value).__name__}, not a boolean",
                model=ctx.model,
            )
        return value

    def value_of(self, expr: ex.Expr, ctx: EvaluationContext) -> Any:
        return self._eval(expr, ctx)

    # --- relation access ---

    def _load(self, model: str, where: Mapping[str, Any]) -> List[Any]:
        if self.client is None:
            raise EvaluationError(f"Loading {model} records needs a data client", model=model)
        return self.client.find_many(model, where=dict(where))

    def _entity(self, model: str, record: Any) -> Optional[Entity]:
        if record is None:
            return None
        return Entity(model, self.schema.model(model).id_field, record=record)

    def relation_value(self, record: Mapping[str, Any], info: FieldInfo) -> Any:
        rel = info.relation
        target = self.schema.model(rel.target)
        if info.name in record:
            value = record[info.name]
            if rel.is_list:
                return list(value or [])
            return self._entity(rel.target, value)

        join = rel.join_filter(record)
        if rel.is_list:
            return [] if join is None else self._load(rel.target, join)
        if join is None:
            return None
        if rel.owning and rel.remote_keys == (target.id_field,):
            return Entity(
                rel.target,
                target.id_field,
                identity=join[target.id_field],
                loader=lambda: next(iter(self._load(rel.target, join)), None),
            )
        rows = self._load(rel.target, join)
        return self._entity(rel.target, rows[0] if rows else None)

    def _principal(self, ctx: EvaluationContext) -> Any:
        principal = ctx.principal
        if principal is None:
            return None
        auth = self.schema.auth_model
        if auth is None:
            return principal
        id_field = self.schema.auth_id_field
        if isinstance(principal, Mapping) or hasattr(principal, id_field):
            return Entity(auth, id_field, record=principal)
        return Entity(
            auth,
            id_field,
            identity=principal,
            loader=lambda: next(iter(self._load(auth, {id_field: principal})), None),
        )

    def _member(self, target: Any, name: str, ctx: EvaluationContext) -> Any:
        if target is None:
            return None
        if isinstance(target, Entity):
            record = target.record
            if record is None:
                return None
            info = self.schema.model(target.model).get_field(name) if target.model else None
            if info is not None and info.is_relation:
                if not isinstance(record, Mapping):
                    record = _AttrView(record)
                return self.relation_value(record, info)
            return read_attr(record, name)
        if not isinstance(target, (str, int, float, bool, datetime, list)):
            return read_attr(target, name)
        raise EvaluationError(f"Member access '.{name}' on a {type(target).__name__}", model=ctx.model)

    # --- evaluation ---

    def _eval(self, node: ex.Expr, ctx: EvaluationContext) -> Any:
        if isinstance(node, ex.Literal):
            return node.value

        if isinstance(node, ex.ArrayLiteral):
            return [self._eval(i, ctx) for i in node.items]

        if isinstance(node, ex.FieldRef):
            info = self.schema.model(ctx.model).get_field(node.name)
            if info is not None and info.is_relation:
                return self.relation_value(ctx.record, info)
            return ctx.record.get(node.name)

        if isinstance(node, ex.This):
            return self._entity(ctx.model, ctx.record)

        if isinstance(node, ex.Call):
            return self._eval_call(node, ctx)

        if isinstance(node, ex.Member):
            return self._member(self._eval(node.target, ctx), node.name, ctx)

        if isinstance(node, ex.CollectionPredicate):
            return self._eval_collection(node, ctx)

        if isinstance(node, ex.Unary):
            return not self._truth(node.operand, ctx)

        if isinstance(node, ex.Binary):
            return self._eval_binary(node, ctx)

        raise EvaluationError(f"Cannot evaluate {type(node).__name__}", model=ctx.model)

    def _truth(self, node: ex.Expr, ctx: EvaluationContext) -> bool:
        value = self._eval(node, ctx)
        if value is None:
            return False
        if not isinstance(value, bool):
            raise EvaluationError(f"Expected a boolean, got {type(value).__name__}", model=ctx.model)
        return value

    def _eval_call(self, node: ex.Call, ctx: EvaluationContext) -> Any:
        if node.name in ("principal", "auth"):
            return self._principal(ctx)
        if node.name == "now":
            return ctx.now
        if node.name == "before":
            if ctx.before is None:
                raise EvaluationError("before() used outside a post-update check", model=ctx.model)
            return self._entity(ctx.model, ctx.before)
        if node.name in ("contains", "startsWith", "endsWith"):
            value = self._eval(node.args[0], ctx)
            text = self._eval(node.args[1], ctx)
            if value is None or text is None:
                return False
            if not isinstance(value, str) or not isinstance(text, str):
                raise EvaluationError(f"{node.name}() expects strings", model=ctx.model)
            if len(node.args) > 2 and self._eval(node.args[2], ctx):
                value, text = value.casefold(), text.casefold()
            if node.name == "contains":
                return text in value
            if node.name == "startsWith":
                return value.startswith(text)
            return value.endswith(text)
        raise EvaluationError(f"Unknown function {node.name}()", model=ctx.model)

    def _collection_model(self, node: ex.Expr, scope: str) -> Optional[str]:
        if isinstance(node, ex.FieldRef):
            info = self.schema.model(scope).get_field(node.name)
            return info.type_name if info is not None else None
        if isinstance(node, ex.Member):
            owner = self._collection_model(node.target, scope)
            if owner is None or owner not in self.schema.models:
                return None
            info = self.schema.model(owner).get_field(node.name)
            return info.type_name if info is not None else None
        if isinstance(node, ex.Call) and node.name in ("principal", "auth"):
            return self.schema.auth_model
        if isinstance(node, ex.Call) and node.name == "before":
            return scope
        if isinstance(node, ex.This):
            return scope
        return None

    def _eval_collection(self, node: ex.CollectionPredicate, ctx: EvaluationContext) -> bool:
        items = self._eval(node.target, ctx)
        if items is None:
            # parent of the collection is absent
            return False
        model = self._collection_model(node.target, ctx.model)
        if model is None:
            raise EvaluationError("Collection predicate over an unknown relation", model=ctx.model)
        for item in items:
            record = item.record if isinstance(item, Entity) else item
            hit = self._truth(node.predicate, ctx.rebind(model, record or {}))
            if node.quantifier == ex.SOME and hit:
                return True
            if node.quantifier == ex.EVERY and not hit:
                return False
            if node.quantifier == ex.NONE and hit:
                return False
        return node.quantifier != ex.SOME

    def _eval_binary(self, node: ex.Binary, ctx: EvaluationContext) -> Any:
        op = node.op
        if op == "&&":
            return self._truth(node.left, ctx) and self._truth(node.right, ctx)
        if op == "||":
            return self._truth(node.left, ctx) or self._truth(node.right, ctx)

        if op in ("==", "!=") and (ex.is_null_literal(node.left) or ex.is_null_literal(node.right)):
            other = node.right if ex.is_null_literal(node.left) else node.left
            present = self._present(self._eval(other, ctx))
            return present if op == "!=" else not present

        left = self._eval(node.left, ctx)
        if op == "in":
            if left is None:
                return False
            return any(self._equal(left, item, ctx) for item in self._eval(node.right, ctx) if item is not None)

        right = self._eval(node.right, ctx)
        if op in ("==", "!=") and self._anonymous(node, ctx) and (self._present(left) or self._present(right)):
            # no principal is unequal to anything present
            return op == "!="
        if not self._present(left) or not self._present(right):
            return False
        if op == "==":
            return self._equal(left, right, ctx)
        if op == "!=":
            return not self._equal(left, right, ctx)
        return self._order(left, right, op, ctx)

    @staticmethod
    def _anonymous(node: ex.Binary, ctx: EvaluationContext) -> bool:
        return ctx.principal is None and (ex.is_principal_call(node.left) or ex.is_principal_call(node.right))

    @staticmethod
    def _present(value: Any) -> bool:
        if isinstance(value, Entity):
            return value.identity is not None or value.record is not None
        return value is not None

    def _equal(self, left: Any, right: Any, ctx: EvaluationContext) -> bool:
        if isinstance(left, Entity) or isinstance(right, Entity):
            id_field = (left if isinstance(left, Entity) else right).id_field
            a, b = identity_of(left, id_field), identity_of(right, id_field)
            return a is not None and b is not None and a == b
        lc, rc = value_category(left), value_category(right)
        if lc != rc:
            raise EvaluationError(f"Cannot compare {lc} with {rc}", model=ctx.model)
        return left == right

    def _order(self, left: Any, right: Any, op: str, ctx: EvaluationContext) -> bool:
        lc, rc = value_category(left), value_category(right)
        if lc != rc or lc not in ("Number", "String", "DateTime"):
            raise EvaluationError(f"Cannot order {lc} against {rc}", model=ctx.model)
        try:
            if op == "<":
                return left < right
            if op == "<=":
                return left <= right
            if op == ">":
                return left > right
            return left >= right
        except TypeError as e:
            raise EvaluationError(f"Cannot order {lc} values: {e}", model=ctx.model) from e


class _AttrView(Mapping):
    """Read-only mapping over an object's attributes (principal objects)."""

    def __init__(self, obj: Any):
        self._obj = obj

    def __getitem__(self, key: str) -> Any:
        try:
            return getattr(self._obj, key)
        except AttributeError:
            raise KeyError(key) from None

    def __iter__(self):
        return iter(k for k in dir(self._obj) if not k.startswith("_"))

    def __len__(self) -> int:
        return sum(1 for _ in self)
