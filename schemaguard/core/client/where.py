from __future__ import annotations

from typing import Any, Callable, List, Mapping, Optional

from schemaguard.core.compiler.policy_models import CompiledSchema, FieldInfo
from schemaguard.core.errors import DataClientError

from .base import Record

Fetch = Callable[[str, Mapping[str, Any]], List[Record]]

_TO_ONE_OPS = ("is", "isNot")
_TO_MANY_OPS = ("some", "every", "none")


def is_field_ref(value: Any) -> bool:
    return isinstance(value, Mapping) and set(value) == {"$field"}


def _items(cond: Any) -> List[Any]:
    if cond is None:
        return []
    if isinstance(cond, (list, tuple)):
        return list(cond)
    return [cond]


def _fold(value: Any, insensitive: bool) -> Any:
    if insensitive and isinstance(value, str):
        return value.casefold()
    return value


class WhereMatcher:
    """Evaluates the where dialect against stored rows.

    Absent values never satisfy a comparison: {"a": {"not": 1}} does not match
    a row whose `a` is null. Only an explicit null operand tests for absence.
    """

    def __init__(self, schema: CompiledSchema, fetch: Fetch):
        self.schema = schema
        self._fetch = fetch

    def matches(self, model: str, row: Mapping[str, Any], where: Optional[Mapping[str, Any]]) -> bool:
        if not where:
            return True
        m = self.schema.model(model)
        for key, cond in where.items():
            if key == "AND":
                ok = all(self.matches(model, row, w) for w in _items(cond))
            elif key == "OR":
                ok = any(self.matches(model, row, w) for w in _items(cond))
            elif key == "NOT":
                ok = not any(self.matches(model, row, w) for w in _items(cond))
            else:
                info = m.get_field(key)
                if info is None:
                    raise DataClientError(f"Unknown field {model}.{key} in filter")
                if info.is_relation:
                    ok = self._match_relation(info, row, cond)
                else:
                    ok = self._match_scalar(row, row.get(key), cond)
            if not ok:
                return False
        return True

    def related(self, info: FieldInfo, row: Mapping[str, Any]) -> List[Record]:
        rel = info.relation
        join = rel.join_filter(row)
        if join is None:
            return []
        return self._fetch(rel.target, join)

    # --- relations ---

    def _match_relation(self, info: FieldInfo, row: Mapping[str, Any], cond: Any) -> bool:
        target = info.relation.target
        related = self.related(info, row)

        if info.relation.is_list:
            if not isinstance(cond, Mapping) or not set(cond) <= set(_TO_MANY_OPS):
                raise DataClientError(f"Filter on to-many relation '{info.name}' needs some/every/none")
            for op, sub in cond.items():
                hits = [self.matches(target, r, sub) for r in related]
                if op == "some" and not any(hits):
                    return False
                if op == "every" and not all(hits):
                    return False
                if op == "none" and any(hits):
                    return False
            return True

        if cond is None:
            return not related
        if isinstance(cond, Mapping) and cond and set(cond) <= set(_TO_ONE_OPS):
            for op, sub in cond.items():
                if sub is None:
                    ok = not related if op == "is" else bool(related)
                elif op == "is":
                    ok = bool(related) and self.matches(target, related[0], sub)
                else:
                    ok = bool(related) and not self.matches(target, related[0], sub)
                if not ok:
                    return False
            return True
        return bool(related) and self.matches(target, related[0], cond)

    # --- scalars ---

    def _resolve(self, row: Mapping[str, Any], operand: Any) -> Any:
        if is_field_ref(operand):
            return row.get(operand["$field"])
        return operand

    def _equals(self, row, value: Any, operand: Any, insensitive: bool = False) -> bool:
        other = self._resolve(row, operand)
        if other is None:
            # a null field operand is not a presence test
            return value is None and not is_field_ref(operand)
        if value is None:
            return False
        return _fold(value, insensitive) == _fold(other, insensitive)

    def _match_scalar(self, row: Mapping[str, Any], value: Any, cond: Any) -> bool:
        if not isinstance(cond, Mapping) or is_field_ref(cond):
            return self._equals(row, value, cond)

        insensitive = cond.get("mode") == "insensitive"
        for op, operand in cond.items():
            if op == "mode":
                continue
            if op == "equals":
                ok = self._equals(row, value, operand, insensitive)
            elif op == "not":
                if isinstance(operand, Mapping) and not is_field_ref(operand):
                    ok = not self._match_scalar(row, value, operand)
                elif is_field_ref(operand):
                    other = self._resolve(row, operand)
                    ok = value is not None and other is not None and not self._equals(row, value, operand, insensitive)
                elif operand is None:
                    ok = value is not None
                else:
                    ok = value is not None and not self._equals(row, value, operand, insensitive)
            elif op in ("in", "notIn"):
                found = value is not None and any(self._equals(row, value, o, insensitive) for o in operand)
                ok = found if op == "in" else value is not None and not found
            elif op in ("lt", "lte", "gt", "gte"):
                ok = self._order(value, self._resolve(row, operand), op)
            elif op in ("contains", "startsWith", "endsWith"):
                ok = self._text(value, self._resolve(row, operand), op, insensitive)
            else:
                raise DataClientError(f"Unknown filter operator '{op}'")
            if not ok:
                return False
        return True

    @staticmethod
    def _order(value: Any, other: Any, op: str) -> bool:
        if value is None or other is None:
            return False
        try:
            if op == "lt":
                return value < other
            if op == "lte":
                return value <= other
            if op == "gt":
                return value > other
            return value >= other
        except TypeError:
            # incomparable values never match
            return False

    @staticmethod
    def _text(value: Any, other: Any, op: str, insensitive: bool) -> bool:
        if not isinstance(value, str) or not isinstance(other, str):
            return False
        value, other = _fold(value, insensitive), _fold(other, insensitive)
        if op == "contains":
            return other in value
        if op == "startsWith":
            return value.startswith(other)
        return value.endswith(other)
