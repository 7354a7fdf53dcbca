from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, FrozenSet, List, Mapping, Optional, Tuple

from schemaguard.core.attributes.registry import BoundAttribute
from schemaguard.core.errors import UnknownModelError


class Operation(str, Enum):
    CREATE = "create"
    READ = "read"
    UPDATE = "update"
    DELETE = "delete"
    POST_UPDATE = "post-update"


CRUD = frozenset({Operation.CREATE, Operation.READ, Operation.UPDATE, Operation.DELETE})


class Effect(str, Enum):
    ALLOW = "allow"
    DENY = "deny"


class BehaviorKind(str, Enum):
    VALIDATE = "validate"
    OMIT_ON_READ = "omit-on-read"
    TRANSFORM_ON_WRITE = "transform-on-write"
    TRANSFORM_ON_READ = "transform-on-read"


@dataclass(frozen=True)
class PolicyRule:
    operations: FrozenSet[Operation]
    effect: Effect
    expression: Any
    source: str
    index: int

    def applies_to(self, op: Operation) -> bool:
        return op in self.operations


@dataclass(frozen=True)
class FieldRule:
    field: str
    operations: FrozenSet[Operation]
    effect: Effect
    expression: Any
    source: str
    index: int

    def applies_to(self, op: Operation) -> bool:
        return op in self.operations


@dataclass(frozen=True)
class FieldBehavior:
    kind: BehaviorKind
    name: str
    params: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))


@dataclass(frozen=True)
class ModelValidation:
    expression: Any
    source: str
    message: Optional[str] = None


@dataclass(frozen=True)
class DefaultSpec:
    kind: str  # literal | uuid | cuid | now | autoincrement
    value: Any = None

    @property
    def generated_by_client(self) -> bool:
        return self.kind == "autoincrement"

    def generate(self, now: datetime) -> Any:
        if self.kind == "literal":
            return self.value
        if self.kind == "uuid":
            return str(uuid.uuid4())
        if self.kind == "cuid":
            return "c" + uuid.uuid4().hex[:24]
        if self.kind == "now":
            return now
        raise ValueError(f"Default '{self.kind}' is generated by the data client")


@dataclass(frozen=True)
class RelationInfo:
    target: str
    is_list: bool
    owning: bool
    # related rows satisfy target[remote_keys[i]] == record[local_keys[i]]
    local_keys: Tuple[str, ...]
    remote_keys: Tuple[str, ...]
    opposite: Optional[str] = None
    name: Optional[str] = None

    def join_filter(self, record: Mapping[str, Any]) -> Optional[Dict[str, Any]]:
        """Where-filter selecting the related rows, or None if a join key is missing."""
        where: Dict[str, Any] = {}
        for local, remote in zip(self.local_keys, self.remote_keys):
            value = record.get(local)
            if value is None:
                return None
            where[remote] = value
        return where


@dataclass(frozen=True)
class FieldInfo:
    name: str
    type_name: str
    kind: str  # scalar | enum | relation
    optional: bool = False
    is_list: bool = False
    is_id: bool = False
    is_unique: bool = False
    default: Optional[DefaultSpec] = None
    relation: Optional[RelationInfo] = None
    attributes: Tuple[BoundAttribute, ...] = ()

    @property
    def is_relation(self) -> bool:
        return self.kind == "relation"

    def has_attribute(self, name: str) -> bool:
        return any(a.name == name for a in self.attributes)


@dataclass(frozen=True)
class CompiledModel:
    name: str
    fields: Mapping[str, FieldInfo]
    id_field: str
    rules: Tuple[PolicyRule, ...] = ()
    field_rules: Mapping[str, Tuple[FieldRule, ...]] = field(default_factory=lambda: MappingProxyType({}))
    behaviors: Mapping[str, Tuple[FieldBehavior, ...]] = field(default_factory=lambda: MappingProxyType({}))
    validations: Tuple[ModelValidation, ...] = ()
    is_auth: bool = False

    def get_field(self, name: str) -> Optional[FieldInfo]:
        return self.fields.get(name)

    def rules_for(self, op: Operation, effect: Optional[Effect] = None) -> List[PolicyRule]:
        return [r for r in self.rules if r.applies_to(op) and (effect is None or r.effect == effect)]

    def field_rules_for(self, field_name: str, op: Operation) -> List[FieldRule]:
        return [r for r in self.field_rules.get(field_name, ()) if r.applies_to(op)]

    def behaviors_of(self, kind: BehaviorKind) -> List[Tuple[str, FieldBehavior]]:
        out: List[Tuple[str, FieldBehavior]] = []
        for name, items in self.behaviors.items():
            for b in items:
                if b.kind == kind:
                    out.append((name, b))
        return out

    @property
    def scalar_fields(self) -> List[FieldInfo]:
        return [f for f in self.fields.values() if not f.is_relation]

    @property
    def relation_fields(self) -> List[FieldInfo]:
        return [f for f in self.fields.values() if f.is_relation]


@dataclass(frozen=True)
class CompiledSchema:
    models: Mapping[str, CompiledModel]
    enums: Mapping[str, Tuple[str, ...]] = field(default_factory=lambda: MappingProxyType({}))
    auth_model: Optional[str] = None

    def model(self, name: str) -> CompiledModel:
        m = self.models.get(name)
        if m is None:
            raise UnknownModelError(name)
        return m

    def identity_of(self, model: str, record: Any) -> Any:
        if record is None:
            return None
        return record.get(self.model(model).id_field)

    @property
    def auth_id_field(self) -> str:
        if self.auth_model is None:
            return "id"
        return self.model(self.auth_model).id_field
