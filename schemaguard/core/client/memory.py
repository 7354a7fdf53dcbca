from __future__ import annotations

import copy
import logging
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Mapping, Optional, Tuple

from schemaguard.core.compiler.policy_models import CompiledModel, CompiledSchema
from schemaguard.core.errors import DataClientError, UniqueConstraintError

from .base import Include, OrderBy, Record, Where, and_filters
from .where import WhereMatcher

_log = logging.getLogger("schemaguard.client")


def _sort_rows(rows: List[Record], order_by: Optional[OrderBy]) -> List[Record]:
    if not order_by:
        return rows
    keys = [order_by] if isinstance(order_by, Mapping) else list(order_by)
    for spec in reversed(keys):
        for name, direction in reversed(list(spec.items())):
            desc = str(direction).lower() == "desc"
            present = [r for r in rows if r.get(name) is not None]
            missing = [r for r in rows if r.get(name) is None]
            present.sort(key=lambda r: r[name], reverse=desc)
            # nulls first ascending, last descending
            rows = present + missing if desc else missing + present
    return rows


class InMemoryClient:
    """
    Reference relational client backed by per-model row lists.

    Implements the DataClient protocols, @id/@unique constraints, schema
    defaults, includes and copy-on-write transactions. Foreign keys are not
    checked. Every call returns copies; stored rows are never handed out.
    """

    def __init__(self, schema: CompiledSchema):
        self.schema = schema
        self._lock = threading.RLock()
        self._tables: Dict[str, List[Record]] = {name: [] for name in schema.models}
        self._sequences: Dict[Tuple[str, str], int] = {}
        self._tx_depth = 0
        self._matcher = WhereMatcher(schema, self._select)

    # --- internals ---

    def _table(self, model: str) -> Tuple[CompiledModel, List[Record]]:
        m = self.schema.model(model)
        return m, self._tables[m.name]

    def _select(self, model: str, where: Optional[Where]) -> List[Record]:
        _, rows = self._table(model)
        return [r for r in rows if self._matcher.matches(model, r, where)]

    def _check_data(self, m: CompiledModel, data: Mapping[str, Any]) -> None:
        for key in data:
            info = m.get_field(key)
            if info is None:
                raise DataClientError(f"Unknown field {m.name}.{key}")
            if info.is_relation:
                raise DataClientError(f"Relation field {m.name}.{key} cannot be written directly")

    def _check_unique(self, m: CompiledModel, rows: List[Record], row: Record, skip: Optional[Record] = None) -> None:
        for info in m.scalar_fields:
            if not info.is_unique or row.get(info.name) is None:
                continue
            for other in rows:
                if other is skip or other is row:
                    continue
                if other.get(info.name) == row[info.name]:
                    raise UniqueConstraintError(model=m.name, field=info.name)

    def _next_sequence(self, model: str, field: str) -> int:
        key = (model, field)
        self._sequences[key] = self._sequences.get(key, 0) + 1
        return self._sequences[key]

    def _bump_sequence(self, model: str, field: str, value: Any) -> None:
        if isinstance(value, int) and not isinstance(value, bool):
            key = (model, field)
            self._sequences[key] = max(self._sequences.get(key, 0), value)

    def _project(self, model: str, row: Record, include: Optional[Include]) -> Record:
        out = copy.deepcopy(row)
        if not include:
            return out
        m = self.schema.model(model)
        for name, spec in include.items():
            if not spec:
                continue
            info = m.get_field(name)
            if info is None or not info.is_relation:
                raise DataClientError(f"Cannot include {model}.{name}: not a relation")
            opts: Mapping[str, Any] = spec if isinstance(spec, Mapping) else {}
            rel = info.relation
            join = rel.join_filter(row)
            if join is None:
                out[name] = [] if rel.is_list else None
                continue
            related = self.find_many(
                rel.target,
                where=and_filters(join, opts.get("where")),
                include=opts.get("include"),
                order_by=opts.get("order_by"),
                skip=opts.get("skip", 0),
                take=opts.get("take") if rel.is_list else 1,
            )
            out[name] = related if rel.is_list else (related[0] if related else None)
        return out

    # --- Reader ---

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
        with self._lock:
            rows = _sort_rows(self._select(model, where), order_by)
            rows = rows[skip:] if take is None else rows[skip : skip + take]
            return [self._project(model, r, include) for r in rows]

    def find_first(
        self,
        model: str,
        *,
        where: Optional[Where] = None,
        include: Optional[Include] = None,
        order_by: Optional[OrderBy] = None,
    ) -> Optional[Record]:
        rows = self.find_many(model, where=where, include=include, order_by=order_by, take=1)
        return rows[0] if rows else None

    def count(self, model: str, *, where: Optional[Where] = None) -> int:
        with self._lock:
            return len(self._select(model, where))

    # --- Creator ---

    def create(self, model: str, *, data: Mapping[str, Any]) -> Record:
        with self._lock:
            m, rows = self._table(model)
            self._check_data(m, data)
            row: Record = copy.deepcopy(dict(data))
            now = datetime.now(timezone.utc)
            for info in m.scalar_fields:
                if info.name in row:
                    if info.default is not None and info.default.generated_by_client:
                        self._bump_sequence(m.name, info.name, row[info.name])
                    continue
                if info.default is not None:
                    if info.default.generated_by_client:
                        row[info.name] = self._next_sequence(m.name, info.name)
                    else:
                        row[info.name] = copy.deepcopy(info.default.generate(now))
                elif info.optional:
                    row[info.name] = None
                elif info.is_list:
                    row[info.name] = []
                else:
                    raise DataClientError(f"Missing value for required field {m.name}.{info.name}")
            self._check_unique(m, rows, row)
            rows.append(row)
            _log.debug("Created %s row", m.name)
            return copy.deepcopy(row)

    # --- Updater ---

    def _apply(self, m: CompiledModel, rows: List[Record], row: Record, data: Mapping[str, Any]) -> None:
        updated = {**row, **copy.deepcopy(dict(data))}
        self._check_unique(m, rows, updated, skip=row)
        row.update(updated)

    def update(self, model: str, *, where: Where, data: Mapping[str, Any]) -> Optional[Record]:
        with self._lock:
            m, rows = self._table(model)
            self._check_data(m, data)
            matched = self._select(model, where)
            if not matched:
                return None
            self._apply(m, rows, matched[0], data)
            return copy.deepcopy(matched[0])

    def update_many(self, model: str, *, where: Optional[Where] = None, data: Mapping[str, Any]) -> int:
        with self.transaction():
            m, rows = self._table(model)
            self._check_data(m, data)
            matched = self._select(model, where)
            for row in matched:
                self._apply(m, rows, row, data)
            return len(matched)

    # --- Deleter ---

    def delete(self, model: str, *, where: Where) -> Optional[Record]:
        with self._lock:
            m, rows = self._table(model)
            matched = self._select(model, where)
            if not matched:
                return None
            target = matched[0]
            self._tables[m.name] = [r for r in rows if r is not target]
            return copy.deepcopy(target)

    def delete_many(self, model: str, *, where: Optional[Where] = None) -> int:
        with self._lock:
            m, rows = self._table(model)
            matched = self._select(model, where)
            ids = {id(r) for r in matched}
            self._tables[m.name] = [r for r in rows if id(r) not in ids]
            return len(matched)

    # --- Transactional ---

    @contextmanager
    def transaction(self) -> Iterator["InMemoryClient"]:
        with self._lock:
            if self._tx_depth:
                self._tx_depth += 1
                try:
                    yield self
                finally:
                    self._tx_depth -= 1
                return

            snapshot = (copy.deepcopy(self._tables), dict(self._sequences))
            self._tx_depth = 1
            try:
                yield self
            except BaseException:
                self._tables, self._sequences = snapshot
                _log.debug("Transaction rolled back")
                raise
            finally:
                self._tx_depth = 0
