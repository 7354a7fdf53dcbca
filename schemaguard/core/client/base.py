"""
Capability protocols of a relational data client.

Where filters use a small dialect shared by the raw client and the enforced
client:

    {"title": "x"}                          equality shorthand
    {"age": {"gte": 18, "not": None}}        operators: equals not in notIn lt lte gt gte
                                            contains startsWith endsWith (+ mode: "insensitive")
    {"owner": {"is": {...}}}                to-one relation: is / isNot
    {"members": {"some": {...}}}            to-many relation: some / every / none
    {"AND": [...], "OR": [...], "NOT": ...}
    {"updatedAt": {"gt": {"$field": "createdAt"}}}   compare with another field of the row

{"AND": []} matches every row, {"OR": []} matches none.
"""
from __future__ import annotations

from typing import Any, ContextManager, Dict, List, Mapping, Optional, Protocol, Sequence, Union

Record = Dict[str, Any]
Where = Mapping[str, Any]
Include = Mapping[str, Any]
OrderBy = Union[Mapping[str, str], Sequence[Mapping[str, str]]]


class Reader(Protocol):
    def find_many(
        self,
        model: str,
        *,
        where: Optional[Where] = None,
        include: Optional[Include] = None,
        order_by: Optional[OrderBy] = None,
        skip: int = 0,
        take: Optional[int] = None,
    ) -> List[Record]:
        ...

    def find_first(
        self,
        model: str,
        *,
        where: Optional[Where] = None,
        include: Optional[Include] = None,
        order_by: Optional[OrderBy] = None,
    ) -> Optional[Record]:
        ...

    def count(self, model: str, *, where: Optional[Where] = None) -> int:
        ...


class Creator(Protocol):
    def create(self, model: str, *, data: Mapping[str, Any]) -> Record:
        ...


class Updater(Protocol):
    def update(self, model: str, *, where: Where, data: Mapping[str, Any]) -> Optional[Record]:
        ...

    def update_many(self, model: str, *, where: Optional[Where] = None, data: Mapping[str, Any]) -> int:
        ...


class Deleter(Protocol):
    def delete(self, model: str, *, where: Where) -> Optional[Record]:
        ...

    def delete_many(self, model: str, *, where: Optional[Where] = None) -> int:
        ...


class Transactional(Protocol):
    def transaction(self) -> ContextManager[Any]:
        """Everything done on the client inside the block commits or rolls back together."""
        ...


class DataClient(Reader, Creator, Updater, Deleter, Transactional, Protocol):
    pass


TRUE_FILTER: Dict[str, Any] = {"AND": []}
FALSE_FILTER: Dict[str, Any] = {"OR": []}


def is_true_filter(where: Optional[Where]) -> bool:
    return not where or (set(where) == {"AND"} and not where["AND"])


def is_false_filter(where: Optional[Where]) -> bool:
    return bool(where) and set(where) == {"OR"} and not where["OR"]


def and_filters(*parts: Optional[Where]) -> Dict[str, Any]:
    """Conjunction with constant folding."""
    items: List[Any] = []
    for p in parts:
        if is_true_filter(p):
            continue
        if is_false_filter(p):
            return dict(FALSE_FILTER)
        items.append(p)
    if not items:
        return dict(TRUE_FILTER)
    if len(items) == 1:
        return dict(items[0])
    return {"AND": items}


def or_filters(*parts: Optional[Where]) -> Dict[str, Any]:
    """Disjunction with constant folding; None parts are ignored."""
    items: List[Any] = []
    for p in parts:
        if p is None or is_false_filter(p):
            continue
        if is_true_filter(p):
            return dict(TRUE_FILTER)
        items.append(p)
    if not items:
        return dict(FALSE_FILTER)
    if len(items) == 1:
        return dict(items[0])
    return {"OR": items}


def not_filter(where: Where) -> Dict[str, Any]:
    if is_true_filter(where):
        return dict(FALSE_FILTER)
    if is_false_filter(where):
        return dict(TRUE_FILTER)
    return {"NOT": where}
