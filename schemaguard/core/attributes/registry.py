from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Tuple

from schemaguard.core.errors import ArgumentTypeMismatch, UnknownAttribute
from schemaguard.core.schema import expressions as ex
from schemaguard.core.schema.models import AttributeDecl

# Parameter types
STRING = "String"
INT = "Int"
NUMBER = "Number"
BOOLEAN = "Boolean"
EXPRESSION = "Expression"
FIELD_LIST = "FieldList"
VALUE = "Value"

MODEL = "model"
FIELD = "field"


@dataclass(frozen=True)
class ParamSpec:
    name: str
    type: str
    optional: bool = False


@dataclass(frozen=True)
class AttributeSignature:
    name: str
    target: str  # MODEL | FIELD
    params: Tuple[ParamSpec, ...] = ()
    # policy | behavior | structure
    category: str = "structure"

    @property
    def display_name(self) -> str:
        return ("@@" if self.target == MODEL else "@") + self.name


@dataclass(frozen=True)
class BoundAttribute:
    signature: AttributeSignature
    args: Mapping[str, Any] = field(default_factory=dict)
    line: int = 0

    @property
    def name(self) -> str:
        return self.signature.name

    def get(self, name: str, default: Any = None) -> Any:
        value = self.args.get(name)
        return default if value is None else value

    def literal(self, name: str, default: Any = None) -> Any:
        node = self.args.get(name)
        if isinstance(node, ex.Literal):
            return node.value
        return default


def _describe(node: Any) -> str:
    if isinstance(node, ex.Literal):
        v = node.value
        if v is None:
            return "null"
        if isinstance(v, bool):
            return "Boolean literal"
        if isinstance(v, int):
            return "Int literal"
        if isinstance(v, float):
            return "Float literal"
        return "String literal"
    if isinstance(node, ex.ArrayLiteral):
        return "array"
    if isinstance(node, ex.Reference):
        return f"reference '{node.name}'"
    if isinstance(node, ex.Call):
        return f"call {node.name}()"
    return "expression"


def _accepts(param_type: str, node: Any) -> bool:
    if param_type == EXPRESSION:
        return True
    if param_type == FIELD_LIST:
        if isinstance(node, ex.Reference):
            return True
        return isinstance(node, ex.ArrayLiteral) and all(isinstance(i, ex.Reference) for i in node.items)
    if param_type == VALUE:
        return isinstance(node, (ex.Literal, ex.Call, ex.Reference, ex.ArrayLiteral))
    if not isinstance(node, ex.Literal) or node.value is None:
        return False
    v = node.value
    if param_type == STRING:
        return isinstance(v, str)
    if param_type == BOOLEAN:
        return isinstance(v, bool)
    if param_type == INT:
        return isinstance(v, int) and not isinstance(v, bool)
    if param_type == NUMBER:
        return isinstance(v, (int, float)) and not isinstance(v, bool)
    return False


def _normalize(param_type: str, node: Any) -> Any:
    if param_type == FIELD_LIST and isinstance(node, ex.Reference):
        return ex.ArrayLiteral((node,), node.line, node.column)
    return node


class AttributeRegistry:
    """Catalog of recognised attributes and their argument signatures.

    The catalog is populated once at startup and frozen; lookups are read-only
    and safe to share between threads.
    """

    def __init__(self):
        self._signatures: Dict[Tuple[str, str], AttributeSignature] = {}
        self._frozen = False

    def register(self, signature: AttributeSignature) -> None:
        if self._frozen:
            raise RuntimeError("AttributeRegistry is frozen")
        key = (signature.target, signature.name)
        if key in self._signatures:
            raise ValueError(f"Duplicate attribute signature: {signature.display_name}")
        seen = set()
        for p in signature.params:
            if p.name in seen:
                raise ValueError(f"Duplicate parameter '{p.name}' in {signature.display_name}")
            seen.add(p.name)
        self._signatures[key] = signature

    def freeze(self) -> "AttributeRegistry":
        self._frozen = True
        return self

    @property
    def frozen(self) -> bool:
        return self._frozen

    def lookup(
        self,
        name: str,
        target: str,
        *,
        model: Optional[str] = None,
        field: Optional[str] = None,
    ) -> AttributeSignature:
        sig = self._signatures.get((target, name))
        if sig is None:
            raise UnknownAttribute(name=name, target=target, model=model, field=field)
        return sig

    def names(self, target: str) -> list[str]:
        return sorted(n for t, n in self._signatures if t == target)

    def bind(
        self,
        decl: AttributeDecl,
        target: str,
        *,
        model: Optional[str] = None,
        field: Optional[str] = None,
    ) -> BoundAttribute:
        sig = self.lookup(decl.name, target, model=model, field=field)
        params = {p.name: p for p in sig.params}
        bound: Dict[str, Any] = {}
        positional = 0

        def mismatch(param: Optional[str], expected: str, got: str) -> ArgumentTypeMismatch:
            return ArgumentTypeMismatch(
                attribute=sig.display_name,
                parameter=param,
                expected=expected,
                got=got,
                model=model,
                field=field,
            )

        for arg in decl.args:
            if arg.name is None:
                if positional >= len(sig.params):
                    raise mismatch(None, f"at most {len(sig.params)} argument(s)", "an extra argument")
                spec = sig.params[positional]
                positional += 1
            else:
                spec = params.get(arg.name)
                if spec is None:
                    raise mismatch(arg.name, "a known parameter", "unknown parameter")
            if spec.name in bound:
                raise mismatch(spec.name, "a single value", "duplicate argument")
            if not _accepts(spec.type, arg.value):
                raise mismatch(spec.name, spec.type, _describe(arg.value))
            bound[spec.name] = _normalize(spec.type, arg.value)

        for spec in sig.params:
            if spec.name not in bound and not spec.optional:
                raise mismatch(spec.name, spec.type, "nothing")

        return BoundAttribute(signature=sig, args=MappingProxyType(bound), line=decl.line)
