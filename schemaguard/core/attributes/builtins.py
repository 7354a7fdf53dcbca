from __future__ import annotations

from .registry import (
    EXPRESSION,
    FIELD,
    FIELD_LIST,
    INT,
    MODEL,
    NUMBER,
    STRING,
    VALUE,
    AttributeRegistry,
    AttributeSignature,
    ParamSpec,
)

_POLICY_PARAMS = (ParamSpec("operation", STRING), ParamSpec("condition", EXPRESSION))
_TEXT = (ParamSpec("text", STRING),)
_BOUND = (ParamSpec("value", NUMBER),)


def builtin_signatures() -> list[AttributeSignature]:
    return [
        # model level
        AttributeSignature("allow", MODEL, _POLICY_PARAMS, category="policy"),
        AttributeSignature("deny", MODEL, _POLICY_PARAMS, category="policy"),
        AttributeSignature(
            "validate",
            MODEL,
            (ParamSpec("condition", EXPRESSION), ParamSpec("message", STRING, optional=True)),
            category="behavior",
        ),
        AttributeSignature("auth", MODEL),
        AttributeSignature("uniquePolicies", MODEL),
        # field level: structure
        AttributeSignature("id", FIELD),
        AttributeSignature("unique", FIELD),
        AttributeSignature("default", FIELD, (ParamSpec("value", VALUE),)),
        AttributeSignature(
            "relation",
            FIELD,
            (
                ParamSpec("name", STRING, optional=True),
                ParamSpec("fields", FIELD_LIST, optional=True),
                ParamSpec("references", FIELD_LIST, optional=True),
            ),
        ),
        # field level: access rules
        AttributeSignature("allow", FIELD, _POLICY_PARAMS, category="policy"),
        AttributeSignature("deny", FIELD, _POLICY_PARAMS, category="policy"),
        # field level: behaviors
        AttributeSignature("omit", FIELD, category="behavior"),
        AttributeSignature("password", FIELD, (ParamSpec("rounds", INT, optional=True),), category="behavior"),
        AttributeSignature("encrypted", FIELD, category="behavior"),
        AttributeSignature("trim", FIELD, category="behavior"),
        AttributeSignature("lower", FIELD, category="behavior"),
        AttributeSignature("upper", FIELD, category="behavior"),
        AttributeSignature("email", FIELD, category="behavior"),
        AttributeSignature("url", FIELD, category="behavior"),
        AttributeSignature(
            "length",
            FIELD,
            (ParamSpec("min", INT, optional=True), ParamSpec("max", INT, optional=True)),
            category="behavior",
        ),
        AttributeSignature("regex", FIELD, (ParamSpec("pattern", STRING),), category="behavior"),
        AttributeSignature("startsWith", FIELD, _TEXT, category="behavior"),
        AttributeSignature("endsWith", FIELD, _TEXT, category="behavior"),
        AttributeSignature("contains", FIELD, _TEXT, category="behavior"),
        AttributeSignature("gt", FIELD, _BOUND, category="behavior"),
        AttributeSignature("gte", FIELD, _BOUND, category="behavior"),
        AttributeSignature("lt", FIELD, _BOUND, category="behavior"),
        AttributeSignature("lte", FIELD, _BOUND, category="behavior"),
    ]


def build_default_registry() -> AttributeRegistry:
    registry = AttributeRegistry()
    for sig in builtin_signatures():
        registry.register(sig)
    return registry.freeze()
