from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any, FrozenSet, Mapping, Optional, Tuple

from schemaguard.core.errors import PolicyParseError
from schemaguard.core.schema import expressions as ex

from .policy_models import FieldInfo, Operation

_STRING_FUNCTIONS = ("contains", "startsWith", "endsWith")

# fields whose stored value is not the value written, so they can't be compared
_OPAQUE_ATTRIBUTES = ("password", "encrypted")


@dataclass(frozen=True)
class ExprType:
    kind: str  # String | Int | Float | Boolean | DateTime | Json | Enum | Model | Array | Null | Any
    model: Optional[str] = None  # model name for Model, enum name for Enum
    is_list: bool = False

    @property
    def is_boolean(self) -> bool:
        return self.kind in ("Boolean", "Any")

    @property
    def family(self) -> str:
        if self.kind in ("Int", "Float"):
            return "Number"
        if self.kind == "Enum":
            return "String"
        return self.kind


BOOLEAN = ExprType("Boolean")
DATETIME = ExprType("DateTime")
NULL = ExprType("Null")
ANY = ExprType("Any")


def _literal_type(value: Any) -> ExprType:
    if value is None:
        return NULL
    if isinstance(value, bool):
        return BOOLEAN
    if isinstance(value, int):
        return ExprType("Int")
    if isinstance(value, float):
        return ExprType("Float")
    return ExprType("String")


def field_type(info: FieldInfo) -> ExprType:
    if info.kind == "relation":
        return ExprType("Model", info.type_name, info.is_list)
    if info.kind == "enum":
        return ExprType("Enum", info.type_name, info.is_list)
    return ExprType(info.type_name, None, info.is_list)


def is_path(node: ex.Expr) -> bool:
    """`this`, a field of the record, or a member chain starting at one."""
    if isinstance(node, (ex.This, ex.FieldRef)):
        return True
    if isinstance(node, ex.Member):
        return is_path(node.target)
    return False


def _comparable(a: ExprType, b: ExprType, op: str) -> bool:
    if a.kind == "Any" or b.kind == "Any":
        return True
    if a.is_list or b.is_list:
        return False
    if op in ("==", "!="):
        if a.kind == "Null" or b.kind == "Null":
            return True
        if a.kind == "Model" or b.kind == "Model":
            return a.kind == b.kind and a.model == b.model
        return a.family == b.family
    if a.kind == "Null" or b.kind == "Null":
        return False
    return a.family == b.family and a.family in ("Number", "DateTime", "String")


class ExpressionChecker:
    """Resolves references in a condition and checks it against the compiled fields.

    `filterable` conditions must also be expressible as a row filter: every
    comparison has at most one side depending on the record (two plain scalar
    fields are the exception) and that side is a field path.
    `scalar_only` conditions (@@validate) see the record's scalar fields only.
    """

    def __init__(
        self,
        models: Mapping[str, Mapping[str, FieldInfo]],
        enums: Mapping[str, Tuple[str, ...]],
        auth_model: Optional[str],
        *,
        model: str,
        operations: FrozenSet[Operation] = frozenset(),
        filterable: bool = False,
        scalar_only: bool = False,
        field: Optional[str] = None,
    ):
        self.models = models
        self.enums = enums
        self.auth_model = auth_model
        self.model = model
        self.operations = operations
        self.filterable = filterable
        self.scalar_only = scalar_only
        self.field = field

    def check_condition(self, expr: ex.Expr) -> ex.Expr:
        node, t = self._check(expr, self.model)
        if not t.is_boolean:
            raise self._error(f"Condition must be boolean, got {t.kind}", expr)
        return node

    # --- helpers ---

    def _error(self, message: str, node: ex.Expr) -> PolicyParseError:
        line, column = ex.position(node)
        operation = ",".join(sorted(op.value for op in self.operations)) or None
        return PolicyParseError(
            message,
            model=self.model,
            field=self.field,
            operation=operation,
            line=line,
            column=column,
        )

    def _field(self, scope: str, name: str, node: ex.Expr) -> FieldInfo:
        info = self.models.get(scope, {}).get(name)
        if info is None:
            raise self._error(f"Unknown field '{name}' in model {scope}", node)
        if any(info.has_attribute(a) for a in _OPAQUE_ATTRIBUTES):
            raise self._error(f"Field {scope}.{name} cannot be referenced in a condition", node)
        if self.scalar_only and info.is_relation:
            raise self._error(f"Relation field {scope}.{name} cannot be referenced here", node)
        return info

    def _enum_value(self, name: str) -> Optional[str]:
        for values in self.enums.values():
            if name in values:
                return name
        return None

    def _require_boolean(self, t: ExprType, node: ex.Expr) -> None:
        if not t.is_boolean:
            raise self._error(f"Expected a boolean operand, got {t.kind}", node)

    def _require_filterable(self, left: ex.Expr, lt: ExprType, right: ex.Expr, rt: ExprType, node: ex.Expr) -> None:
        if not self.filterable:
            return
        l_dep = ex.references_record(left)
        r_dep = ex.references_record(right)
        if l_dep and r_dep:
            scalar_fields = (
                isinstance(left, ex.FieldRef)
                and isinstance(right, ex.FieldRef)
                and lt.kind != "Model"
                and rt.kind != "Model"
            )
            if not scalar_fields:
                raise self._error("Both sides of the comparison depend on the record", node)
            return
        side = left if l_dep else right if r_dep else None
        if side is not None and not is_path(side):
            raise self._error("Record side of a comparison must be a field path", node)

    # --- checking ---

    def _check(self, node: ex.Expr, scope: str) -> Tuple[ex.Expr, ExprType]:
        if isinstance(node, ex.Literal):
            return node, _literal_type(node.value)

        if isinstance(node, ex.ArrayLiteral):
            items = [self._check(i, scope)[0] for i in node.items]
            return replace(node, items=tuple(items)), ExprType("Array", is_list=True)

        if isinstance(node, (ex.Reference, ex.FieldRef)):
            if node.name in self.models.get(scope, {}):
                info = self._field(scope, node.name, node)
                return ex.FieldRef(node.name, node.line, node.column), field_type(info)
            if isinstance(node, ex.Reference) and self._enum_value(node.name) is not None:
                return ex.Literal(node.name, node.line, node.column), ExprType("String")
            raise self._error(f"Unknown field '{node.name}' in model {scope}", node)

        if isinstance(node, ex.This):
            if self.scalar_only:
                raise self._error("'this' cannot be used here", node)
            return node, ExprType("Model", scope)

        if isinstance(node, ex.Call):
            return self._check_call(node, scope)

        if isinstance(node, ex.Member):
            target, t = self._check(node.target, scope)
            node = replace(node, target=target)
            if t.kind == "Any":
                return node, ANY
            if t.kind != "Model":
                raise self._error(f"Member access '.{node.name}' on a {t.kind} value", node)
            if t.is_list:
                raise self._error(f"To-many relation needs a collection predicate before '.{node.name}'", node)
            return node, field_type(self._field(t.model, node.name, node))

        if isinstance(node, ex.CollectionPredicate):
            if self.scalar_only:
                raise self._error("Collection predicates cannot be used here", node)
            target, t = self._check(node.target, scope)
            if t.kind != "Model" or not t.is_list:
                raise self._error("Collection predicate requires a to-many relation", node)
            if self.filterable and ex.references_record(target) and not is_path(target):
                raise self._error("Collection predicate target must be a field path", node)
            predicate, pt = self._check(node.predicate, t.model)
            self._require_boolean(pt, node.predicate)
            return replace(node, target=target, predicate=predicate), BOOLEAN

        if isinstance(node, ex.Unary):
            operand, t = self._check(node.operand, scope)
            self._require_boolean(t, node.operand)
            return replace(node, operand=operand), BOOLEAN

        if isinstance(node, ex.Binary):
            return self._check_binary(node, scope)

        raise self._error(f"Unsupported expression {type(node).__name__}", node)

    def _check_call(self, node: ex.Call, scope: str) -> Tuple[ex.Expr, ExprType]:
        name = node.name
        if name in ("principal", "auth"):
            if node.args:
                raise self._error(f"{name}() takes no arguments", node)
            if self.scalar_only:
                raise self._error(f"{name}() cannot be used here", node)
            t = ExprType("Model", self.auth_model) if self.auth_model else ANY
            return ex.Call("principal", (), node.line, node.column), t

        if name == "now":
            if node.args:
                raise self._error("now() takes no arguments", node)
            return node, DATETIME

        if name == "before":
            if node.args:
                raise self._error("before() takes no arguments", node)
            if self.operations != frozenset({Operation.POST_UPDATE}):
                raise self._error("before() is only available in 'post-update' rules", node)
            return node, ExprType("Model", self.model)

        if name in _STRING_FUNCTIONS:
            if len(node.args) not in (2, 3):
                raise self._error(f"{name}() takes a field, a text and an optional case flag", node)
            target, tt = self._check(node.args[0], scope)
            text, xt = self._check(node.args[1], scope)
            for arg, t in ((node.args[0], tt), (node.args[1], xt)):
                if t.family not in ("String", "Any"):
                    raise self._error(f"{name}() expects String arguments, got {t.kind}", arg)
            args = [target, text]
            if len(node.args) == 3:
                flag = node.args[2]
                if not (isinstance(flag, ex.Literal) and isinstance(flag.value, bool)):
                    raise self._error(f"{name}() case flag must be a boolean literal", flag)
                args.append(flag)
            if self.filterable and ex.references_record(text):
                raise self._error(f"{name}() text must not depend on the record", node.args[1])
            self._require_filterable(target, tt, text, xt, node)
            return replace(node, args=tuple(args)), BOOLEAN

        raise self._error(f"Unknown function {name}()", node)

    def _check_binary(self, node: ex.Binary, scope: str) -> Tuple[ex.Expr, ExprType]:
        left, lt = self._check(node.left, scope)
        right, rt = self._check(node.right, scope)
        out = replace(node, left=left, right=right)

        if node.op in ex.LOGICAL_OPS:
            self._require_boolean(lt, node.left)
            self._require_boolean(rt, node.right)
            return out, BOOLEAN

        if node.op == "in":
            if not isinstance(right, ex.ArrayLiteral):
                raise self._error("Right side of 'in' must be an array literal", node.right)
            if ex.references_record(right):
                raise self._error("Array in 'in' must not depend on the record", node.right)
            for item in right.items:
                it = self._check(item, scope)[1]
                if not _comparable(lt, it, "=="):
                    raise self._error(f"Cannot test {lt.kind} membership in an array of {it.kind}", item)
            if self.filterable and ex.references_record(left) and not is_path(left):
                raise self._error("Left side of 'in' must be a field path", node.left)
            return out, BOOLEAN

        if not _comparable(lt, rt, node.op):
            raise self._error(f"Cannot compare {lt.kind} {node.op} {rt.kind}", node)
        self._require_filterable(left, lt, right, rt, node)
        return out, BOOLEAN
