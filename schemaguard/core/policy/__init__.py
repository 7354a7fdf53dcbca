from .context import EvaluationContext
from .decision import Decision, decide, decide_field
from .engine import PolicyEngine
from .evaluator import Entity, ExpressionEvaluator
from .filters import FilterBuilder

__all__ = [
    "Decision",
    "Entity",
    "EvaluationContext",
    "ExpressionEvaluator",
    "FilterBuilder",
    "PolicyEngine",
    "decide",
    "decide_field",
]
