from __future__ import annotations

import re
from typing import Any, Callable, Dict, Mapping, Optional
from urllib.parse import urlparse

_EMAIL = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

# returns an error message, or None when the value passes
Validator = Callable[[Any, Mapping[str, Any]], Optional[str]]


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _email(value: Any, params: Mapping[str, Any]) -> Optional[str]:
    if not isinstance(value, str) or not _EMAIL.match(value):
        return "must be a valid email address"
    return None


def _url(value: Any, params: Mapping[str, Any]) -> Optional[str]:
    if not isinstance(value, str):
        return "must be a valid URL"
    parsed = urlparse(value)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        return "must be a valid URL"
    return None


def _length(value: Any, params: Mapping[str, Any]) -> Optional[str]:
    if not isinstance(value, str):
        return "must be a string"
    lo, hi = params.get("min"), params.get("max")
    if lo is not None and len(value) < lo:
        return f"must be at least {lo} characters"
    if hi is not None and len(value) > hi:
        return f"must be at most {hi} characters"
    return None


def _regex(value: Any, params: Mapping[str, Any]) -> Optional[str]:
    if not isinstance(value, str) or not re.search(params["pattern"], value):
        return "does not match the required pattern"
    return None


def _text(check: Callable[[str, str], bool], wording: str) -> Validator:
    def validate(value: Any, params: Mapping[str, Any]) -> Optional[str]:
        text = params["text"]
        if not isinstance(value, str) or not check(value, text):
            return f"must {wording} '{text}'"
        return None

    return validate


def _bound(check: Callable[[Any, Any], bool], wording: str) -> Validator:
    def validate(value: Any, params: Mapping[str, Any]) -> Optional[str]:
        bound = params["value"]
        if not _is_number(value) or not check(value, bound):
            return f"must be {wording} {bound}"
        return None

    return validate


VALIDATORS: Dict[str, Validator] = {
    "email": _email,
    "url": _url,
    "length": _length,
    "regex": _regex,
    "startsWith": _text(str.startswith, "start with"),
    "endsWith": _text(str.endswith, "end with"),
    "contains": _text(lambda v, t: t in v, "contain"),
    "gt": _bound(lambda v, b: v > b, "greater than"),
    "gte": _bound(lambda v, b: v >= b, "greater than or equal to"),
    "lt": _bound(lambda v, b: v < b, "less than"),
    "lte": _bound(lambda v, b: v <= b, "less than or equal to"),
}
