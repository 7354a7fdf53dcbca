"""Schema-driven access control for data clients."""
from schemaguard.core import errors
from schemaguard.core.client import InMemoryClient
from schemaguard.core.compiler import CompiledSchema, Operation, compile_schema, load_schema
from schemaguard.core.config import EnforcementConfig, load_config
from schemaguard.core.enforcement import EnforcedClient, enhance

__version__ = "0.1.0"

__all__ = [
    "CompiledSchema",
    "EnforcedClient",
    "EnforcementConfig",
    "InMemoryClient",
    "Operation",
    "compile_schema",
    "enhance",
    "errors",
    "load_config",
    "load_schema",
]
