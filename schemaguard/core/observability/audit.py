import json
import logging
import logging.handlers
import time
from pathlib import Path
from typing import Any, Dict, Optional

from schemaguard.core.config import DEFAULT_AUDIT_PATH

# 10MB per file, 5 backups
_MAX_BYTES = 10 * 1024 * 1024
_BACKUP_COUNT = 5

_handler_cache: Dict[str, logging.Handler] = {}


def _now_ms() -> int:
    return int(time.time() * 1000)


def _get_rotating_handler(audit_path: Path) -> logging.Handler:
    key = str(audit_path.resolve())
    if key not in _handler_cache:
        audit_path.parent.mkdir(parents=True, exist_ok=True)
        h = logging.handlers.RotatingFileHandler(
            str(audit_path),
            maxBytes=_MAX_BYTES,
            backupCount=_BACKUP_COUNT,
            encoding="utf-8",
        )
        h.setFormatter(logging.Formatter("%(message)s"))
        _handler_cache[key] = h
    return _handler_cache[key]


def close_audit_handlers() -> None:
    for h in _handler_cache.values():
        h.close()
    _handler_cache.clear()


def audit_decision(
    model: str,
    operation: str,
    outcome: str,
    principal_id: Optional[Any],
    rule: Optional[str] = None,
    field: Optional[str] = None,
    audit_path: Path = DEFAULT_AUDIT_PATH,
) -> None:
    """Append one decision as a JSON line. Record content is never written."""
    record: Dict[str, Any] = {
        "ts_ms": _now_ms(),
        "type": "policy_decision",
        "model": model,
        "operation": operation,
        "outcome": outcome,
        "principal": None if principal_id is None else str(principal_id),
    }
    if rule is not None:
        record["rule"] = rule
    if field is not None:
        record["field"] = field

    line = json.dumps(record, separators=(",", ":"), ensure_ascii=False)

    handler = _get_rotating_handler(audit_path)
    log_record = logging.LogRecord(
        name="schemaguard.audit",
        level=logging.INFO,
        pathname="",
        lineno=0,
        msg=line,
        args=(),
        exc_info=None,
    )
    handler.emit(log_record)
