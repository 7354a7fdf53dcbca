"""Error surface of the access-control layer.

Compile-time errors (raised while loading a schema) derive from CompileError.
Request-time errors (raised by the enforced client) derive from
EnforcementError. EvaluationError signals a broken internal invariant and is
never converted into an allow or a deny.

Messages carry model/field/operation names only. Record values never appear in
an error message.
"""

from __future__ import annotations

from typing import Any, List, Optional, Sequence, Tuple


class SchemaGuardError(Exception):
    def __init__(
        self,
        message: str,
        *,
        model: Optional[str] = None,
        field: Optional[str] = None,
        operation: Optional[str] = None,
    ):
        self.model = model
        self.field = field
        self.operation = operation
        super().__init__(message)

    def to_dict(self) -> dict:
        out = {"error": type(self).__name__, "message": str(self)}
        for key in ("model", "field", "operation"):
            value = getattr(self, key)
            if value is not None:
                out[key] = value
        return out


# ---------------------------------------------------------------------------
# compile time
# ---------------------------------------------------------------------------


class CompileError(SchemaGuardError):
    pass


class SchemaError(CompileError):
    """Structural problem in the schema (duplicate names, unknown types, missing @id)."""


class PolicyParseError(CompileError):
    def __init__(
        self,
        message: str,
        *,
        model: Optional[str] = None,
        field: Optional[str] = None,
        operation: Optional[str] = None,
        line: Optional[int] = None,
        column: Optional[int] = None,
    ):
        self.line = line
        self.column = column
        if line is not None:
            message = f"{message} (line {line}, column {column})"
        super().__init__(message, model=model, field=field, operation=operation)


class UnknownAttribute(CompileError):
    def __init__(self, *, name: str, target: str, model: Optional[str] = None, field: Optional[str] = None):
        self.attribute = name
        self.target = target
        prefix = "@@" if target == "model" else "@"
        super().__init__(f"Unknown attribute {prefix}{name}", model=model, field=field)


class ArgumentTypeMismatch(CompileError):
    def __init__(
        self,
        *,
        attribute: str,
        parameter: Optional[str],
        expected: str,
        got: str,
        model: Optional[str] = None,
        field: Optional[str] = None,
    ):
        self.attribute = attribute
        self.parameter = parameter
        self.expected = expected
        self.got = got
        where = f" argument '{parameter}'" if parameter else ""
        super().__init__(
            f"Attribute {attribute}{where}: expected {expected}, got {got}",
            model=model,
            field=field,
        )


class DuplicatePolicyTarget(CompileError):
    def __init__(self, *, model: str, operation: str, effect: str):
        self.effect = effect
        super().__init__(
            f"Model {model} declares more than one '{effect}' rule for '{operation}'",
            model=model,
            operation=operation,
        )


# ---------------------------------------------------------------------------
# request time
# ---------------------------------------------------------------------------


class EnforcementError(SchemaGuardError):
    pass


class PolicyViolation(EnforcementError):
    def __init__(
        self,
        *,
        model: str,
        operation: str,
        field: Optional[str] = None,
        reason: str = "denied by policy",
    ):
        self.reason = reason
        target = f"{model}.{field}" if field else model
        super().__init__(f"{operation} on {target} {reason}", model=model, field=field, operation=operation)


Issue = Tuple[str, str]


class ValidationError(EnforcementError):
    def __init__(self, *, model: str, issues: Sequence[Issue], operation: Optional[str] = None):
        self.issues: List[Issue] = list(issues)
        fields = sorted({f for f, _ in self.issues})
        super().__init__(
            f"Validation failed for {model}: " + "; ".join(f"{f}: {msg}" for f, msg in self.issues),
            model=model,
            field=fields[0] if len(fields) == 1 else None,
            operation=operation,
        )

    @property
    def fields(self) -> List[str]:
        return [f for f, _ in self.issues]

    def to_dict(self) -> dict:
        out = super().to_dict()
        out["issues"] = [{"field": f, "message": m} for f, m in self.issues]
        return out


class RecordNotFound(EnforcementError):
    def __init__(self, *, model: str, operation: str):
        super().__init__(f"No {model} record matches the {operation} target", model=model, operation=operation)


class UnsupportedOperation(EnforcementError):
    pass


class UnknownModelError(EnforcementError, LookupError):
    def __init__(self, name: Any):
        super().__init__(f"Unknown model: {name}", model=str(name))


# ---------------------------------------------------------------------------
# internal invariant
# ---------------------------------------------------------------------------


class EvaluationError(SchemaGuardError):
    pass


class CryptoError(SchemaGuardError):
    """Encryption key missing or ciphertext that does not decrypt."""


# ---------------------------------------------------------------------------
# raw data client
# ---------------------------------------------------------------------------


class DataClientError(Exception):
    pass


class UniqueConstraintError(DataClientError):
    def __init__(self, *, model: str, field: str):
        self.model = model
        self.field = field
        super().__init__(f"Unique constraint failed on {model}.{field}")
