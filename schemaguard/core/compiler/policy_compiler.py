"""
Schema tree -> CompiledSchema.

Passes, in order:
  1. bind every attribute against the registry
  2. classify field types (scalar / enum / relation)
  3. resolve relation join keys and back references
  4. id, unique and default specs; the auth model
  5. access rules, field rules, validations and field behaviors

The result is immutable and shared by every enforced client built from it.
"""
from __future__ import annotations

import logging
import re
from types import MappingProxyType
from typing import Dict, FrozenSet, List, Optional, Set, Tuple

from schemaguard.core.attributes import DEFAULT_REGISTRY
from schemaguard.core.attributes.registry import FIELD, MODEL, AttributeRegistry, BoundAttribute
from schemaguard.core.errors import DuplicatePolicyTarget, PolicyParseError, SchemaError
from schemaguard.core.schema import expressions as ex
from schemaguard.core.schema.models import SCALAR_TYPES, FieldDecl, ModelDecl, SchemaTree
from schemaguard.core.schema.parser import parse_schema

from .policy_models import (
    CRUD,
    BehaviorKind,
    CompiledModel,
    CompiledSchema,
    DefaultSpec,
    Effect,
    FieldBehavior,
    FieldInfo,
    FieldRule,
    ModelValidation,
    Operation,
    PolicyRule,
    RelationInfo,
)
from .typecheck import ExpressionChecker

_log = logging.getLogger("schemaguard.compiler")

_FILTERED_OPERATIONS = frozenset({Operation.READ, Operation.UPDATE, Operation.DELETE})
_FIELD_RULE_OPERATIONS = frozenset({Operation.READ, Operation.UPDATE})

_GENERATORS = ("uuid", "cuid", "now", "autoincrement")

_STRING_TRANSFORMS = ("trim", "lower", "upper")
_NUMBER_VALIDATORS = ("gt", "gte", "lt", "lte")
_NUMBER_TYPES = ("Int", "Float")


def parse_operations(text: str, *, allowed: FrozenSet[Operation] = frozenset(Operation)) -> FrozenSet[Operation]:
    """'create,read' -> {CREATE, READ}; 'all' expands to create/read/update/delete."""
    ops: Set[Operation] = set()
    for part in text.split(","):
        name = part.strip()
        if not name:
            continue
        if name == "all":
            ops |= CRUD & allowed
            continue
        try:
            op = Operation(name)
        except ValueError:
            raise ValueError(f"unknown operation '{name}'") from None
        if op not in allowed:
            raise ValueError(f"operation '{name}' is not allowed here")
        ops.add(op)
    if not ops:
        raise ValueError("no operation given")
    return frozenset(ops)


def _names(node) -> Tuple[str, ...]:
    if node is None:
        return ()
    return tuple(i.name for i in node.items)


class PolicyCompiler:
    def __init__(self, registry: Optional[AttributeRegistry] = None):
        self.registry = registry or DEFAULT_REGISTRY

    def compile(self, tree: SchemaTree) -> CompiledSchema:
        self._enums: Dict[str, Tuple[str, ...]] = {e.name: tuple(e.values) for e in tree.enums}
        self._decls: Dict[str, ModelDecl] = {m.name: m for m in tree.models}

        self._model_attrs: Dict[str, List[BoundAttribute]] = {}
        self._field_attrs: Dict[Tuple[str, str], List[BoundAttribute]] = {}
        for model in tree.models:
            self._bind(model)

        kinds = {
            (model.name, f.name): self._kind_of(model, f) for model in tree.models for f in model.fields
        }
        relations = self._resolve_relations(tree, kinds)

        fields: Dict[str, Dict[str, FieldInfo]] = {}
        id_fields: Dict[str, str] = {}
        for model in tree.models:
            fields[model.name], id_fields[model.name] = self._field_infos(model, kinds, relations)

        auth_model = self._auth_model(tree)

        compiled: Dict[str, CompiledModel] = {}
        rule_count = 0
        for model in tree.models:
            rules = self._model_rules(model, fields, auth_model)
            field_rules = self._field_rules(model, fields, auth_model)
            validations = self._validations(model, fields)
            behaviors = self._behaviors(model, fields[model.name])
            compiled[model.name] = CompiledModel(
                name=model.name,
                fields=MappingProxyType(fields[model.name]),
                id_field=id_fields[model.name],
                rules=rules,
                field_rules=MappingProxyType(field_rules),
                behaviors=MappingProxyType(behaviors),
                validations=validations,
                is_auth=model.name == auth_model,
            )
            rule_count += len(rules)

        _log.info(
            "Compiled schema: %d model(s), %d access rule(s), auth model=%s",
            len(compiled),
            rule_count,
            auth_model,
        )
        return CompiledSchema(
            models=MappingProxyType(compiled),
            enums=MappingProxyType(dict(self._enums)),
            auth_model=auth_model,
        )

    # --- pass 1 ---

    def _bind(self, model: ModelDecl) -> None:
        self._model_attrs[model.name] = [
            self.registry.bind(a, MODEL, model=model.name) for a in model.attributes
        ]
        for f in model.fields:
            self._field_attrs[(model.name, f.name)] = [
                self.registry.bind(a, FIELD, model=model.name, field=f.name) for a in f.attributes
            ]

    def _attrs(self, model: str, field: str, name: Optional[str] = None) -> List[BoundAttribute]:
        attrs = self._field_attrs.get((model, field), [])
        return [a for a in attrs if name is None or a.name == name]

    # --- pass 2 ---

    def _kind_of(self, model: ModelDecl, f: FieldDecl) -> str:
        if f.type_name in SCALAR_TYPES:
            return "scalar"
        if f.type_name in self._enums:
            return "enum"
        if f.type_name in self._decls:
            return "relation"
        raise SchemaError(f"Unknown type '{f.type_name}'", model=model.name, field=f.name)

    # --- pass 3 ---

    def _resolve_relations(self, tree: SchemaTree, kinds) -> Dict[Tuple[str, str], RelationInfo]:
        # (model, field) -> (relation name, fields, references)
        declared: Dict[Tuple[str, str], Tuple[Optional[str], Tuple[str, ...], Tuple[str, ...]]] = {}
        for model in tree.models:
            for f in model.fields:
                if kinds[(model.name, f.name)] != "relation":
                    if self._attrs(model.name, f.name, "relation"):
                        raise SchemaError("@relation on a non-relation field", model=model.name, field=f.name)
                    continue
                rel = next(iter(self._attrs(model.name, f.name, "relation")), None)
                if rel is None:
                    declared[(model.name, f.name)] = (None, (), ())
                else:
                    declared[(model.name, f.name)] = (
                        rel.literal("name"),
                        _names(rel.args.get("fields")),
                        _names(rel.args.get("references")),
                    )

        out: Dict[Tuple[str, str], RelationInfo] = {}
        for (model_name, field_name), (rel_name, local, remote) in declared.items():
            decl = self._decls[model_name].field(field_name)
            target = decl.type_name
            if local or remote:
                out[(model_name, field_name)] = self._owning_relation(
                    model_name, decl, rel_name, local, remote, declared
                )
                continue

            candidates = [
                (fname, info)
                for (mname, fname), info in declared.items()
                if mname == target
                and self._decls[mname].field(fname).type_name == model_name
                and (mname, fname) != (model_name, field_name)
                and info[0] == rel_name
            ]
            owning = [(fname, info) for fname, info in candidates if info[1]]
            if not owning:
                if candidates:
                    raise SchemaError(
                        f"Implicit many-to-many relation with {target} is not supported",
                        model=model_name,
                        field=field_name,
                    )
                raise SchemaError(
                    f"Relation to {target} needs @relation(fields: [...], references: [...]) on one side",
                    model=model_name,
                    field=field_name,
                )
            if len(owning) > 1:
                raise SchemaError(
                    f"Ambiguous relation to {target}; name both sides with @relation(\"...\")",
                    model=model_name,
                    field=field_name,
                )
            opposite, (_, their_fields, their_refs) = owning[0]
            out[(model_name, field_name)] = RelationInfo(
                target=target,
                is_list=decl.is_list,
                owning=False,
                local_keys=their_refs,
                remote_keys=their_fields,
                opposite=opposite,
                name=rel_name,
            )
        return out

    def _owning_relation(self, model_name, decl, rel_name, local, remote, declared) -> RelationInfo:
        target = decl.type_name
        if decl.is_list:
            raise SchemaError("A to-many relation cannot hold the foreign key", model=model_name, field=decl.name)
        if not local or len(local) != len(remote):
            raise SchemaError(
                "@relation needs 'fields' and 'references' of the same length",
                model=model_name,
                field=decl.name,
            )
        for name in local:
            f = self._decls[model_name].field(name)
            if f is None or f.type_name not in SCALAR_TYPES:
                raise SchemaError(f"Relation key '{name}' is not a scalar field", model=model_name, field=decl.name)
        for name in remote:
            f = self._decls[target].field(name)
            if f is None or f.type_name not in SCALAR_TYPES:
                raise SchemaError(f"Referenced key {target}.{name} is not a scalar field", model=model_name, field=decl.name)
        back = [
            fname
            for (mname, fname), info in declared.items()
            if mname == target
            and self._decls[mname].field(fname).type_name == model_name
            and (mname, fname) != (model_name, decl.name)
            and info[0] == rel_name
            and not info[1]
        ]
        return RelationInfo(
            target=target,
            is_list=False,
            owning=True,
            local_keys=local,
            remote_keys=remote,
            opposite=back[0] if len(back) == 1 else None,
            name=rel_name,
        )

    # --- pass 4 ---

    def _field_infos(self, model: ModelDecl, kinds, relations) -> Tuple[Dict[str, FieldInfo], str]:
        infos: Dict[str, FieldInfo] = {}
        ids: List[str] = []
        for f in model.fields:
            kind = kinds[(model.name, f.name)]
            attrs = tuple(self._attrs(model.name, f.name))
            is_id = any(a.name == "id" for a in attrs)
            if is_id:
                if kind == "relation" or f.is_list:
                    raise SchemaError("@id must be a single scalar field", model=model.name, field=f.name)
                ids.append(f.name)
            default = None
            for a in attrs:
                if a.name == "default":
                    default = self._default_spec(model.name, f, a)
            infos[f.name] = FieldInfo(
                name=f.name,
                type_name=f.type_name,
                kind=kind,
                optional=f.optional,
                is_list=f.is_list,
                is_id=is_id,
                is_unique=is_id or any(a.name == "unique" for a in attrs),
                default=default,
                relation=relations.get((model.name, f.name)),
                attributes=attrs,
            )
        if len(ids) != 1:
            raise SchemaError(f"Model {model.name} must declare exactly one @id field", model=model.name)
        return infos, ids[0]

    def _default_spec(self, model: str, f: FieldDecl, attr: BoundAttribute) -> DefaultSpec:
        node = attr.args.get("value")
        if isinstance(node, ex.Literal):
            return DefaultSpec("literal", node.value)
        if isinstance(node, ex.Reference) and f.type_name in self._enums:
            if node.name not in self._enums[f.type_name]:
                raise SchemaError(f"'{node.name}' is not a value of enum {f.type_name}", model=model, field=f.name)
            return DefaultSpec("literal", node.name)
        if isinstance(node, ex.ArrayLiteral) and all(isinstance(i, ex.Literal) for i in node.items):
            return DefaultSpec("literal", [i.value for i in node.items])
        if isinstance(node, ex.Call) and node.name in _GENERATORS and not node.args:
            if node.name == "autoincrement" and f.type_name != "Int":
                raise SchemaError("autoincrement() needs an Int field", model=model, field=f.name)
            if node.name == "now" and f.type_name != "DateTime":
                raise SchemaError("now() default needs a DateTime field", model=model, field=f.name)
            return DefaultSpec(node.name)
        raise SchemaError("Unsupported @default value", model=model, field=f.name)

    def _auth_model(self, tree: SchemaTree) -> Optional[str]:
        marked = [m.name for m in tree.models if any(a.name == "auth" for a in self._model_attrs[m.name])]
        if len(marked) > 1:
            raise SchemaError("More than one model is marked @@auth")
        if marked:
            return marked[0]
        return "User" if "User" in self._decls else None

    # --- pass 5 ---

    def _operations(self, attr: BoundAttribute, model: str, field: Optional[str], allowed) -> FrozenSet[Operation]:
        raw = attr.literal("operation", "")
        try:
            return parse_operations(raw, allowed=allowed)
        except ValueError as e:
            node = attr.args.get("operation")
            line, column = ex.position(node)
            raise PolicyParseError(
                f"Invalid operation list '{raw}': {e}",
                model=model,
                field=field,
                line=line,
                column=column,
            ) from e

    def _model_rules(self, model: ModelDecl, fields, auth_model) -> Tuple[PolicyRule, ...]:
        attrs = self._model_attrs[model.name]
        unique = any(a.name == "uniquePolicies" for a in attrs)
        seen: Set[Tuple[Operation, Effect]] = set()
        rules: List[PolicyRule] = []
        for attr in attrs:
            if attr.name not in ("allow", "deny"):
                continue
            effect = Effect(attr.name)
            ops = self._operations(attr, model.name, None, frozenset(Operation))
            checker = ExpressionChecker(
                fields,
                self._enums,
                auth_model,
                model=model.name,
                operations=ops,
                filterable=bool(ops & _FILTERED_OPERATIONS),
            )
            expr = checker.check_condition(attr.args["condition"])
            if unique:
                for op in ops:
                    if (op, effect) in seen:
                        raise DuplicatePolicyTarget(model=model.name, operation=op.value, effect=effect.value)
                    seen.add((op, effect))
            rules.append(
                PolicyRule(
                    operations=ops,
                    effect=effect,
                    expression=expr,
                    source=ex.to_source(attr.args["condition"]),
                    index=len(rules),
                )
            )
        return tuple(rules)

    def _field_rules(self, model: ModelDecl, fields, auth_model) -> Dict[str, Tuple[FieldRule, ...]]:
        out: Dict[str, Tuple[FieldRule, ...]] = {}
        for f in model.fields:
            items: List[FieldRule] = []
            for attr in self._attrs(model.name, f.name):
                if attr.name not in ("allow", "deny"):
                    continue
                ops = self._operations(attr, model.name, f.name, _FIELD_RULE_OPERATIONS)
                checker = ExpressionChecker(
                    fields,
                    self._enums,
                    auth_model,
                    model=model.name,
                    operations=ops,
                    filterable=Operation.READ in ops,
                    field=f.name,
                )
                items.append(
                    FieldRule(
                        field=f.name,
                        operations=ops,
                        effect=Effect(attr.name),
                        expression=checker.check_condition(attr.args["condition"]),
                        source=ex.to_source(attr.args["condition"]),
                        index=len(items),
                    )
                )
            if items:
                out[f.name] = tuple(items)
        return out

    def _validations(self, model: ModelDecl, fields) -> Tuple[ModelValidation, ...]:
        out: List[ModelValidation] = []
        for attr in self._model_attrs[model.name]:
            if attr.name != "validate":
                continue
            checker = ExpressionChecker(fields, self._enums, None, model=model.name, scalar_only=True)
            condition = attr.args["condition"]
            out.append(
                ModelValidation(
                    expression=checker.check_condition(condition),
                    source=ex.to_source(condition),
                    message=attr.literal("message"),
                )
            )
        return tuple(out)

    def _behaviors(self, model: ModelDecl, infos: Dict[str, FieldInfo]) -> Dict[str, Tuple[FieldBehavior, ...]]:
        out: Dict[str, Tuple[FieldBehavior, ...]] = {}
        for f in model.fields:
            info = infos[f.name]
            items: List[FieldBehavior] = []
            for attr in self._attrs(model.name, f.name):
                if attr.signature.category != "behavior":
                    continue
                self._check_applicable(model.name, info, attr.name)
                params = MappingProxyType({k: attr.literal(k) for k in attr.args})
                if attr.name == "omit":
                    items.append(FieldBehavior(BehaviorKind.OMIT_ON_READ, "omit"))
                elif attr.name == "password":
                    items.append(FieldBehavior(BehaviorKind.TRANSFORM_ON_WRITE, "password", params))
                elif attr.name == "encrypted":
                    items.append(FieldBehavior(BehaviorKind.TRANSFORM_ON_WRITE, "encrypt"))
                    items.append(FieldBehavior(BehaviorKind.TRANSFORM_ON_READ, "decrypt"))
                elif attr.name in _STRING_TRANSFORMS:
                    items.append(FieldBehavior(BehaviorKind.TRANSFORM_ON_WRITE, attr.name))
                else:
                    self._check_params(model.name, f.name, attr.name, params)
                    items.append(FieldBehavior(BehaviorKind.VALIDATE, attr.name, params))
            if items:
                out[f.name] = tuple(items)
        return out

    def _check_applicable(self, model: str, info: FieldInfo, name: str) -> None:
        if name == "omit":
            return
        if info.is_relation or info.is_list:
            raise SchemaError(f"@{name} cannot be applied to this field", model=model, field=info.name)
        if name in _NUMBER_VALIDATORS:
            if info.type_name not in _NUMBER_TYPES:
                raise SchemaError(f"@{name} needs an Int or Float field", model=model, field=info.name)
        elif info.type_name != "String":
            raise SchemaError(f"@{name} needs a String field", model=model, field=info.name)

    def _check_params(self, model: str, field: str, name: str, params) -> None:
        if name == "regex":
            try:
                re.compile(params["pattern"])
            except re.error as e:
                raise SchemaError(f"Invalid @regex pattern: {e}", model=model, field=field) from e
        if name == "length":
            lo, hi = params.get("min"), params.get("max")
            if lo is None and hi is None:
                raise SchemaError("@length needs min or max", model=model, field=field)
            if lo is not None and hi is not None and lo > hi:
                raise SchemaError("@length min is greater than max", model=model, field=field)


def compile_schema(tree: SchemaTree, registry: Optional[AttributeRegistry] = None) -> CompiledSchema:
    return PolicyCompiler(registry).compile(tree)


def load_schema(text: str, registry: Optional[AttributeRegistry] = None) -> CompiledSchema:
    """Parse and compile schema text in one step."""
    return compile_schema(parse_schema(text), registry)
