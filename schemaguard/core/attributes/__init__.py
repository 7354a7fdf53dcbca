from .builtins import build_default_registry, builtin_signatures
from .registry import AttributeRegistry, AttributeSignature, BoundAttribute, ParamSpec

DEFAULT_REGISTRY = build_default_registry()

__all__ = [
    "AttributeRegistry",
    "AttributeSignature",
    "BoundAttribute",
    "DEFAULT_REGISTRY",
    "ParamSpec",
    "build_default_registry",
    "builtin_signatures",
]
