"""
Policy-enforcing data client.

EnforcedClient implements the same DataClient protocols as the raw client it
wraps. Reads get the read row filter injected (also into relation filters and
to-many includes); writes are checked against the proposed or pre-update
record and run inside a client transaction, so a failing post-update check
leaves nothing behind.
"""
from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, Iterator, List, Mapping, Optional

from schemaguard.core.behaviors.pipeline import FieldBehaviorPipeline
from schemaguard.core.client.base import (
    Include,
    OrderBy,
    Record,
    Where,
    and_filters,
    is_false_filter,
    is_true_filter,
    not_filter,
    or_filters,
)
from schemaguard.core.compiler.policy_models import BehaviorKind, CompiledModel, CompiledSchema, FieldInfo, Operation
from schemaguard.core.config import EnforcementConfig
from schemaguard.core.errors import (
    PolicyViolation,
    RecordNotFound,
    UnsupportedOperation,
    ValidationError,
)
from schemaguard.core.observability.metrics import inc_named
from schemaguard.core.policy.engine import PolicyEngine

_log = logging.getLogger("schemaguard.enforcement")

_TO_ONE_OPS = ("is", "isNot")
_NOT_FILTERABLE = "cannot be used to filter or sort"


class EnforcedClient:
    def __init__(
        self,
        client: Any,
        schema: CompiledSchema,
        principal: Any = None,
        *,
        config: Optional[EnforcementConfig] = None,
        now: Optional[datetime] = None,
    ):
        self._client = client
        self.schema = schema
        self.principal = principal
        self.config = config or EnforcementConfig()
        self.policy = PolicyEngine(schema, client, principal, config=self.config, now=now)
        self.behaviors = FieldBehaviorPipeline(schema, self.config)

    def model(self, name: str) -> "ModelClient":
        return ModelClient(self, self.schema.model(name).name)

    # --- helpers ---

    @staticmethod
    def _key(m: CompiledModel, row: Mapping[str, Any]) -> Dict[str, Any]:
        return {m.id_field: row[m.id_field]}

    @staticmethod
    def _scalars(m: CompiledModel, row: Mapping[str, Any]) -> Dict[str, Any]:
        relations = {f.name for f in m.relation_fields}
        return {k: v for k, v in row.items() if k not in relations}

    def _readable(self, m: CompiledModel, row: Mapping[str, Any]) -> bool:
        return self.policy.check(m.name, Operation.READ, self._scalars(m, row)).allowed

    # --- read filtering ---

    def _guard_where(self, model: str, where: Optional[Where]) -> Optional[Dict[str, Any]]:
        """Caller filter with relation filters restricted to readable rows and conditions on read-denied fields made false."""
        if not where:
            return None
        m = self.schema.model(model)
        plain: Dict[str, Any] = {}
        parts: List[Dict[str, Any]] = []
        for key, cond in where.items():
            if key in ("AND", "OR", "NOT"):
                if isinstance(cond, (list, tuple)):
                    plain[key] = [self._guard_where(model, c) or {} for c in cond]
                else:
                    plain[key] = self._guard_where(model, cond) or {}
                continue
            info = m.get_field(key)
            if info is None:
                plain[key] = cond
                continue
            self._require_visible(m, key)
            visible = self.policy.field_filter(m.name, key, Operation.READ)
            if info.is_relation:
                parts.append(and_filters(self._guard_relation(info, cond), visible))
            elif is_true_filter(visible):
                plain[key] = cond
            else:
                # a condition on a hidden value never holds
                parts.append(and_filters({key: cond}, visible))
        return and_filters(plain, *parts) if parts else plain

    def _require_visible(self, m: CompiledModel, name: str) -> None:
        if any(b.kind == BehaviorKind.OMIT_ON_READ for b in m.behaviors.get(name, ())):
            raise PolicyViolation(model=m.name, operation="read", field=name, reason=_NOT_FILTERABLE)

    def _guard_order(self, model: str, order_by: Optional[OrderBy]) -> Optional[OrderBy]:
        """Sort keys must be readable on every row: omitted fields and fields behind read rules are refused."""
        if not order_by:
            return order_by
        m = self.schema.model(model)
        for spec in [order_by] if isinstance(order_by, Mapping) else order_by:
            for name in spec:
                self._require_visible(m, name)
                if not is_true_filter(self.policy.field_filter(m.name, name, Operation.READ)):
                    raise PolicyViolation(model=m.name, operation="read", field=name, reason=_NOT_FILTERABLE)
        return order_by

    def _guard_relation(self, info: FieldInfo, cond: Any) -> Dict[str, Any]:
        target = info.relation.target
        guard = self.policy.filter_for(target, Operation.READ)
        name = info.name

        if info.relation.is_list:
            out: Dict[str, Any] = {}
            for op, sub in (cond or {}).items():
                sub = self._guard_where(target, sub)
                if op == "every":
                    out[op] = or_filters(not_filter(guard), sub or {})
                else:
                    out[op] = and_filters(guard, sub)
            return {name: out}

        if cond is None:
            ops: Mapping[str, Any] = {"is": None}
        elif isinstance(cond, Mapping) and cond and set(cond) <= set(_TO_ONE_OPS):
            ops = cond
        else:
            ops = {"is": cond}

        parts: List[Dict[str, Any]] = []
        for op, sub in ops.items():
            if sub is None and op == "is":
                parts.append(or_filters({name: {"is": None}}, {name: {"is": not_filter(guard)}}))
            elif sub is None:
                parts.append({name: {"is": guard}})
            elif op == "is":
                parts.append({name: {"is": and_filters(guard, self._guard_where(target, sub))}})
            else:
                inner = self._guard_where(target, sub)
                parts.append({name: {"is": and_filters(guard, not_filter(inner or {}))}})
        return and_filters(*parts)

    def _guard_include(self, model: str, include: Optional[Include]) -> Optional[Dict[str, Any]]:
        if not include:
            return None
        m = self.schema.model(model)
        out: Dict[str, Any] = {}
        for name, spec in include.items():
            if not spec:
                continue
            info = m.get_field(name)
            if info is None or not info.is_relation:
                raise ValidationError(model=m.name, issues=[(name, "is not a relation")], operation="read")
            opts: Dict[str, Any] = dict(spec) if isinstance(spec, Mapping) else {}
            target = info.relation.target
            if info.relation.is_list:
                opts["where"] = and_filters(
                    self._guard_where(target, opts.get("where")),
                    self.policy.filter_for(target, Operation.READ),
                )
            if opts.get("order_by"):
                opts["order_by"] = self._guard_order(target, opts["order_by"])
            if opts.get("include"):
                opts["include"] = self._guard_include(target, opts["include"])
            out[name] = opts or True
        return out

    def _present(self, model: str, row: Mapping[str, Any], include: Optional[Include]) -> Record:
        """Returned shape of a row: unreadable to-one includes nulled, read-denied and omitted fields removed."""
        m = self.schema.model(model)
        scalars = self._scalars(m, row)
        out = dict(row)
        for name, spec in (include or {}).items():
            if not spec or name not in out:
                continue
            info = m.get_field(name)
            target = self.schema.model(info.relation.target)
            nested = spec.get("include") if isinstance(spec, Mapping) else None
            value = out[name]
            if info.relation.is_list:
                out[name] = [self._present(target.name, r, nested) for r in value or []]
            elif value is not None:
                out[name] = self._present(target.name, value, nested) if self._readable(target, value) else None
        for name in m.field_rules:
            if name in out and not self.policy.field_allowed(m.name, name, Operation.READ, scalars):
                out.pop(name)
        return self.behaviors.redact(m, out)

    def _read_back(self, m: CompiledModel, row: Optional[Mapping[str, Any]]) -> Optional[Record]:
        if row is None or not self._readable(m, row):
            return None
        return self._present(m.name, row, None)

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
        m = self.schema.model(model)
        guard = self.policy.filter_for(m.name, Operation.READ)
        self.policy.record(m.name, Operation.READ.value, "filter")
        if is_false_filter(guard):
            return []
        rows = self._client.find_many(
            m.name,
            where=and_filters(self._guard_where(m.name, where), guard),
            include=self._guard_include(m.name, include),
            order_by=self._guard_order(m.name, order_by),
            skip=skip,
            take=take,
        )
        return [self._present(m.name, r, include) for r in rows]

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
        m = self.schema.model(model)
        guard = self.policy.filter_for(m.name, Operation.READ)
        if is_false_filter(guard):
            return 0
        return self._client.count(m.name, where=and_filters(self._guard_where(m.name, where), guard))

    # --- write input ---

    def _input(self, m: CompiledModel, data: Mapping[str, Any], operation: str) -> Dict[str, Any]:
        """Reject unknown fields; turn `connect` / `disconnect` into foreign-key values."""
        out: Dict[str, Any] = {}
        unknown = [k for k in data if m.get_field(k) is None]
        if unknown:
            raise ValidationError(
                model=m.name,
                issues=[(k, f"is not a field of {m.name}") for k in unknown],
                operation=operation,
            )
        for key, value in data.items():
            info = m.get_field(key)
            if info.is_relation:
                out.update(self._connect(m, info, value, operation))
            else:
                out[key] = value
        return out

    def _connect(self, m: CompiledModel, info: FieldInfo, value: Any, operation: str) -> Dict[str, Any]:
        rel = info.relation
        nested = sorted(value) if isinstance(value, Mapping) else []
        if not rel.owning or nested not in (["connect"], ["disconnect"]):
            raise UnsupportedOperation(
                f"Nested write {nested or type(value).__name__} on {m.name}.{info.name} is not supported",
                model=m.name,
                field=info.name,
                operation=operation,
            )
        if nested == ["disconnect"]:
            if operation == "create" or not value["disconnect"]:
                raise UnsupportedOperation(
                    f"disconnect is only valid in updates of {m.name}.{info.name}",
                    model=m.name,
                    field=info.name,
                    operation=operation,
                )
            if not info.optional:
                raise ValidationError(model=m.name, issues=[(info.name, "is required")], operation=operation)
            return {k: None for k in rel.local_keys}

        where = value["connect"]
        if not isinstance(where, Mapping) or not where:
            raise ValidationError(model=m.name, issues=[(info.name, "connect needs a unique filter")], operation=operation)
        if all(k in where for k in rel.remote_keys):
            target = where
        else:
            target = self._client.find_first(rel.target, where=dict(where))
            if target is None:
                raise RecordNotFound(model=rel.target, operation="connect")
        return {local: target[remote] for local, remote in zip(rel.local_keys, rel.remote_keys)}

    def _with_defaults(self, m: CompiledModel, data: Mapping[str, Any]) -> Dict[str, Any]:
        out = dict(data)
        now = self.policy.now()
        for info in m.scalar_fields:
            if info.name not in out and info.default is not None and not info.default.generated_by_client:
                out[info.name] = info.default.generate(now)
        return out

    # --- Creator ---

    def create(self, model: str, *, data: Mapping[str, Any]) -> Optional[Record]:
        m = self.schema.model(model)
        payload = self.behaviors.normalize(m, self._input(m, data, "create"))
        proposed = self._with_defaults(m, payload)
        self.behaviors.validate(m, proposed, operation="create", full=True)
        self.policy.require(m.name, Operation.CREATE, proposed)
        stored = self.behaviors.transform_on_write(m, proposed)
        with self._client.transaction():
            row = self._client.create(m.name, data=stored)
            result = self._read_back(m, row)
        return result

    # --- Updater ---

    def _check_fields(self, m: CompiledModel, fields, row: Mapping[str, Any]) -> None:
        for name in fields:
            if not self.policy.field_allowed(m.name, name, Operation.UPDATE, row):
                _log.warning("Denied update of %s.%s", m.name, name)
                raise PolicyViolation(model=m.name, operation="update", field=name)

    def _post_update(self, m: CompiledModel, before: Mapping[str, Any], after: Mapping[str, Any]) -> None:
        try:
            if m.rules_for(Operation.POST_UPDATE):
                self.policy.require(m.name, Operation.POST_UPDATE, after, before=before)
            if self.config.post_update_checks == "always":
                self.policy.require(m.name, Operation.UPDATE, after)
        except PolicyViolation:
            inc_named("post_update_rollbacks")
            raise

    @staticmethod
    def _written(m: CompiledModel, data: Mapping[str, Any], payload: Mapping[str, Any]) -> List[str]:
        """Fields an update touches: caller keys, resolved foreign keys and the relations owning them."""
        names = list(dict.fromkeys([*data, *payload]))
        for info in m.relation_fields:
            if info.relation.owning and info.name not in names and any(k in payload for k in info.relation.local_keys):
                names.append(info.name)
        return names

    def _update_row(self, m: CompiledModel, pre: Record, payload: Mapping[str, Any], written: List[str]) -> Record:
        self._check_fields(m, written, pre)
        self.policy.require(m.name, Operation.UPDATE, pre)
        self.behaviors.validate(m, payload, operation="update", record={**pre, **payload})
        stored = self.behaviors.transform_on_write(m, payload)
        post = self._client.update(m.name, where=self._key(m, pre), data=stored)
        self._post_update(m, pre, post)
        return post

    def update(self, model: str, *, where: Where, data: Mapping[str, Any]) -> Optional[Record]:
        m = self.schema.model(model)
        payload = self.behaviors.normalize(m, self._input(m, data, "update"))
        written = self._written(m, data, payload)
        with self._client.transaction():
            pre = self._client.find_first(m.name, where=self._guard_where(m.name, where))
            if pre is None:
                raise RecordNotFound(model=m.name, operation="update")
            post = self._update_row(m, pre, payload, written)
            result = self._read_back(m, post)
        return result

    def update_many(self, model: str, *, where: Optional[Where] = None, data: Mapping[str, Any]) -> int:
        m = self.schema.model(model)
        payload = self.behaviors.normalize(m, self._input(m, data, "update"))
        written = self._written(m, data, payload)
        guard = self.policy.filter_for(m.name, Operation.UPDATE)
        if is_false_filter(guard):
            return 0
        with self._client.transaction():
            rows = self._client.find_many(m.name, where=and_filters(self._guard_where(m.name, where), guard))
            for pre in rows:
                self._update_row(m, pre, payload, written)
        _log.debug("Updated %d %s row(s)", len(rows), m.name)
        return len(rows)

    # --- Deleter ---

    def delete(self, model: str, *, where: Where) -> Optional[Record]:
        m = self.schema.model(model)
        with self._client.transaction():
            pre = self._client.find_first(m.name, where=self._guard_where(m.name, where))
            if pre is None:
                raise RecordNotFound(model=m.name, operation="delete")
            self.policy.require(m.name, Operation.DELETE, pre)
            result = self._read_back(m, pre)
            self._client.delete(m.name, where=self._key(m, pre))
        return result

    def delete_many(self, model: str, *, where: Optional[Where] = None) -> int:
        m = self.schema.model(model)
        guard = self.policy.filter_for(m.name, Operation.DELETE)
        if is_false_filter(guard):
            return 0
        with self._client.transaction():
            count = self._client.delete_many(m.name, where=and_filters(self._guard_where(m.name, where), guard))
        _log.debug("Deleted %d %s row(s)", count, m.name)
        return count

    # --- Transactional ---

    @contextmanager
    def transaction(self) -> Iterator["EnforcedClient"]:
        with self._client.transaction():
            yield self


class ModelClient:
    """Operations of an EnforcedClient bound to one model: db.model("Post").find_many(...)."""

    def __init__(self, client: EnforcedClient, model: str):
        self._client = client
        self.name = model

    def find_many(self, **kwargs) -> List[Record]:
        return self._client.find_many(self.name, **kwargs)

    def find_first(self, **kwargs) -> Optional[Record]:
        return self._client.find_first(self.name, **kwargs)

    def count(self, **kwargs) -> int:
        return self._client.count(self.name, **kwargs)

    def create(self, *, data: Mapping[str, Any]) -> Optional[Record]:
        return self._client.create(self.name, data=data)

    def update(self, *, where: Where, data: Mapping[str, Any]) -> Optional[Record]:
        return self._client.update(self.name, where=where, data=data)

    def update_many(self, *, where: Optional[Where] = None, data: Mapping[str, Any]) -> int:
        return self._client.update_many(self.name, where=where, data=data)

    def delete(self, *, where: Where) -> Optional[Record]:
        return self._client.delete(self.name, where=where)

    def delete_many(self, *, where: Optional[Where] = None) -> int:
        return self._client.delete_many(self.name, where=where)
