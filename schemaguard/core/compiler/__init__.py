from .policy_compiler import PolicyCompiler, compile_schema, load_schema, parse_operations
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

__all__ = [
    "CRUD",
    "BehaviorKind",
    "CompiledModel",
    "CompiledSchema",
    "DefaultSpec",
    "Effect",
    "FieldBehavior",
    "FieldInfo",
    "FieldRule",
    "ModelValidation",
    "Operation",
    "PolicyCompiler",
    "PolicyRule",
    "RelationInfo",
    "compile_schema",
    "load_schema",
    "parse_operations",
]
