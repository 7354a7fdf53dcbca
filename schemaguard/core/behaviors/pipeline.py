from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Tuple

from schemaguard.core.compiler.policy_models import BehaviorKind, CompiledModel, CompiledSchema, FieldInfo
from schemaguard.core.config import EnforcementConfig
from schemaguard.core.errors import ValidationError
from schemaguard.core.observability.metrics import inc_named
from schemaguard.core.policy.context import EvaluationContext
from schemaguard.core.policy.evaluator import ExpressionEvaluator

from .crypto import FieldCipher
from .transforms import NORMALIZERS, hash_password
from .validators import VALIDATORS

_log = logging.getLogger("schemaguard.behaviors")

MODEL_LEVEL = "@@validate"


def _type_issue(info: FieldInfo, value: Any, enums: Mapping[str, Tuple[str, ...]]) -> Optional[str]:
    if value is None:
        return None if info.optional else "is required"
    if info.is_list:
        return None if isinstance(value, list) else "must be a list"
    if info.kind == "enum":
        return None if value in enums.get(info.type_name, ()) else f"must be one of {info.type_name}"
    t = info.type_name
    if t == "String" and not isinstance(value, str):
        return "must be a string"
    if t == "Int" and (not isinstance(value, int) or isinstance(value, bool)):
        return "must be an integer"
    if t == "Float" and (not isinstance(value, (int, float)) or isinstance(value, bool)):
        return "must be a number"
    if t == "Boolean" and not isinstance(value, bool):
        return "must be a boolean"
    if t == "DateTime" and not isinstance(value, datetime):
        return "must be a datetime"
    if t == "DateTime" and value.utcoffset() is None:
        return "must be a timezone-aware datetime"
    return None


class FieldBehaviorPipeline:
    """
    Write path: normalize -> validate -> transform_on_write (hashing, encryption).
    Read path: redact (omission, decryption).

    Every transform leaves already-transformed values untouched, so running a
    stage twice gives the same stored value.
    """

    def __init__(self, schema: CompiledSchema, config: Optional[EnforcementConfig] = None):
        self.schema = schema
        self.config = config or EnforcementConfig()
        self._cipher = FieldCipher(self.config.encryption_key)
        self._evaluator = ExpressionEvaluator(schema)

    # --- write path ---

    def normalize(self, model: CompiledModel, data: Mapping[str, Any]) -> Dict[str, Any]:
        out = dict(data)
        for name, value in data.items():
            for b in model.behaviors.get(name, ()):
                if b.kind == BehaviorKind.TRANSFORM_ON_WRITE and b.name in NORMALIZERS:
                    value = NORMALIZERS[b.name](value)
            out[name] = value
        return out

    def validate(
        self,
        model: CompiledModel,
        data: Mapping[str, Any],
        *,
        operation: str,
        record: Optional[Mapping[str, Any]] = None,
        full: bool = False,
    ) -> None:
        """Collect every failing field; raise one ValidationError listing them.

        `record` is the full resulting row for model-level conditions; it
        defaults to `data`. With `full`, required fields missing from `data`
        are reported too.
        """
        issues: List[Tuple[str, str]] = []
        if full:
            for info in model.scalar_fields:
                if info.name not in data and not (info.optional or info.is_list or info.default is not None):
                    issues.append((info.name, "is required"))
        for name, value in data.items():
            info = model.get_field(name)
            if info is None or info.is_relation:
                continue
            problem = _type_issue(info, value, self.schema.enums)
            if problem:
                issues.append((name, problem))
                continue
            if value is None:
                continue
            for b in model.behaviors.get(name, ()):
                if b.kind != BehaviorKind.VALIDATE:
                    continue
                message = VALIDATORS[b.name](value, b.params)
                if message:
                    issues.append((name, message))

        if model.validations and not issues:
            ctx = EvaluationContext.build(model.name, record if record is not None else data)
            for v in model.validations:
                if not self._evaluator.evaluate(v.expression, ctx):
                    issues.append((MODEL_LEVEL, v.message or f"condition failed: {v.source}"))

        if issues:
            inc_named("validation_failures")
            _log.info("Validation failed for %s %s on field(s) %s", operation, model.name, [f for f, _ in issues])
            raise ValidationError(model=model.name, issues=issues, operation=operation)

    def transform_on_write(self, model: CompiledModel, data: Mapping[str, Any]) -> Dict[str, Any]:
        out = dict(data)
        for name, value in data.items():
            for b in model.behaviors.get(name, ()):
                if b.kind != BehaviorKind.TRANSFORM_ON_WRITE or value is None:
                    continue
                if b.name in NORMALIZERS:
                    value = NORMALIZERS[b.name](value)
                elif b.name == "password":
                    value = hash_password(value, b.params.get("rounds") or self.config.password_rounds)
                elif b.name == "encrypt":
                    value = self._cipher.encrypt(value, model=model.name, field=name)
            out[name] = value
        return out

    # --- read path ---

    def redact(self, model: CompiledModel, record: Mapping[str, Any]) -> Dict[str, Any]:
        out = dict(record)
        for name, behaviors in model.behaviors.items():
            for b in behaviors:
                if b.kind == BehaviorKind.OMIT_ON_READ:
                    out.pop(name, None)
                elif b.kind == BehaviorKind.TRANSFORM_ON_READ and b.name == "decrypt" and out.get(name) is not None:
                    out[name] = self._cipher.decrypt(out[name], model=model.name, field=name)
        return out
