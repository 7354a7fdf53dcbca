from __future__ import annotations

import re
from typing import Any, Callable, Dict

import bcrypt

_BCRYPT_HASH = re.compile(r"^\$2[aby]\$\d{2}\$[./A-Za-z0-9]{53}$")


def is_password_hash(value: Any) -> bool:
    return isinstance(value, str) and bool(_BCRYPT_HASH.match(value))


def hash_password(value: str, rounds: int) -> str:
    if is_password_hash(value):
        return value
    return bcrypt.hashpw(value.encode("utf-8"), bcrypt.gensalt(rounds=rounds)).decode("ascii")


def verify_password(plain: str, hashed: str) -> bool:
    if not is_password_hash(hashed):
        return False
    return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("ascii"))


def _text(fn: Callable[[str], str]) -> Callable[[Any], Any]:
    def apply(value: Any) -> Any:
        return fn(value) if isinstance(value, str) else value

    return apply


NORMALIZERS: Dict[str, Callable[[Any], Any]] = {
    "trim": _text(str.strip),
    "lower": _text(str.lower),
    "upper": _text(str.upper),
}
