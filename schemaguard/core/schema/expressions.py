from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterator, Optional, Tuple

# Collection predicate quantifiers: r?[..] some, r![..] every, r^[..] none
SOME = "?"
EVERY = "!"
NONE = "^"

COMPARISON_OPS = ("==", "!=", "<", "<=", ">", ">=", "in")
LOGICAL_OPS = ("&&", "||")


@dataclass(frozen=True)
class Literal:
    value: Any  # str | int | float | bool | None
    line: int = 0
    column: int = 0


@dataclass(frozen=True)
class ArrayLiteral:
    items: Tuple["Expr", ...]
    line: int = 0
    column: int = 0


@dataclass(frozen=True)
class Reference:
    """Bare identifier as written in the schema; resolved by the compiler."""

    name: str
    line: int = 0
    column: int = 0


@dataclass(frozen=True)
class FieldRef:
    """Field of the record in scope (resolved Reference)."""

    name: str
    line: int = 0
    column: int = 0


@dataclass(frozen=True)
class This:
    line: int = 0
    column: int = 0


@dataclass(frozen=True)
class Call:
    name: str
    args: Tuple["Expr", ...] = ()
    line: int = 0
    column: int = 0


@dataclass(frozen=True)
class Member:
    target: "Expr"
    name: str
    line: int = 0
    column: int = 0


@dataclass(frozen=True)
class CollectionPredicate:
    target: "Expr"
    quantifier: str  # SOME | EVERY | NONE
    predicate: "Expr"
    line: int = 0
    column: int = 0


@dataclass(frozen=True)
class Unary:
    op: str  # "!"
    operand: "Expr"
    line: int = 0
    column: int = 0


@dataclass(frozen=True)
class Binary:
    op: str
    left: "Expr"
    right: "Expr"
    line: int = 0
    column: int = 0


Expr = Any


def children(node: Expr) -> Iterator[Expr]:
    if isinstance(node, ArrayLiteral):
        yield from node.items
    elif isinstance(node, Call):
        yield from node.args
    elif isinstance(node, Member):
        yield node.target
    elif isinstance(node, CollectionPredicate):
        yield node.target
        yield node.predicate
    elif isinstance(node, Unary):
        yield node.operand
    elif isinstance(node, Binary):
        yield node.left
        yield node.right


def walk(node: Expr) -> Iterator[Expr]:
    yield node
    for child in children(node):
        yield from walk(child)


def is_null_literal(node: Expr) -> bool:
    return isinstance(node, Literal) and node.value is None


def uses_call(node: Expr, name: str) -> bool:
    return any(isinstance(n, Call) and n.name == name for n in walk(node))


def is_principal_call(node: Expr) -> bool:
    return isinstance(node, Call) and node.name in ("principal", "auth")


def to_source(node: Expr) -> str:
    """Render an expression back to schema syntax (used in diagnostics)."""
    if isinstance(node, Literal):
        if node.value is None:
            return "null"
        if isinstance(node.value, bool):
            return "true" if node.value else "false"
        if isinstance(node.value, str):
            return "'" + node.value.replace("'", "\\'") + "'"
        return repr(node.value)
    if isinstance(node, ArrayLiteral):
        return "[" + ", ".join(to_source(i) for i in node.items) + "]"
    if isinstance(node, (Reference, FieldRef)):
        return node.name
    if isinstance(node, This):
        return "this"
    if isinstance(node, Call):
        return f"{node.name}(" + ", ".join(to_source(a) for a in node.args) + ")"
    if isinstance(node, Member):
        return f"{to_source(node.target)}.{node.name}"
    if isinstance(node, CollectionPredicate):
        return f"{to_source(node.target)}{node.quantifier}[{to_source(node.predicate)}]"
    if isinstance(node, Unary):
        return f"!{_paren(node.operand)}"
    if isinstance(node, Binary):
        return f"{_paren(node.left)} {node.op} {_paren(node.right)}"
    raise TypeError(f"Not an expression node: {type(node).__name__}")


def _paren(node: Expr) -> str:
    text = to_source(node)
    if isinstance(node, Binary):
        return f"({text})"
    return text


def position(node: Expr) -> Tuple[Optional[int], Optional[int]]:
    line = getattr(node, "line", 0) or None
    column = getattr(node, "column", 0) or None
    return line, column


def references_record(node: Expr) -> bool:
    """True when the value of `node` depends on the record being checked.

    Collection predicates only depend on the record through their target; the
    predicate itself is scoped to the related rows.
    """
    if isinstance(node, (FieldRef, Reference, This)):
        return True
    if isinstance(node, Call):
        return node.name == "before" or any(references_record(a) for a in node.args)
    if isinstance(node, (Member, CollectionPredicate)):
        return references_record(node.target)
    if isinstance(node, Literal):
        return False
    return any(references_record(c) for c in children(node))
