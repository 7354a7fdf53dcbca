from __future__ import annotations

import logging
from typing import Dict, Type

from fastapi import FastAPI, Request
from starlette.responses import JSONResponse

from schemaguard.core.errors import (
    CryptoError,
    EvaluationError,
    PolicyViolation,
    RecordNotFound,
    SchemaGuardError,
    UnknownModelError,
    UnsupportedOperation,
    ValidationError,
)

log = logging.getLogger("schemaguard.api")

STATUS_CODES: Dict[Type[SchemaGuardError], int] = {
    PolicyViolation: 403,
    ValidationError: 422,
    RecordNotFound: 404,
    UnsupportedOperation: 400,
    UnknownModelError: 400,
}


def _request_id(request: Request):
    return getattr(request.state, "request_id", None) or request.headers.get("x-request-id")


def install_error_handlers(app: FastAPI) -> None:
    """
    Map access-control errors onto HTTP responses.

    - enforcement errors keep their diagnostic fields (model, field, operation)
    - evaluation and crypto failures never leak details; logged server-side
    """

    async def _enforcement(request: Request, exc: SchemaGuardError) -> JSONResponse:
        status = next((code for cls, code in STATUS_CODES.items() if isinstance(exc, cls)), 400)
        payload = {"detail": exc.to_dict()}
        rid = _request_id(request)
        if rid:
            payload["request_id"] = rid
        log.info("%s %s -> %d (%s)", request.method, request.url.path, status, type(exc).__name__)
        return JSONResponse(status_code=status, content=payload)

    async def _internal(request: Request, exc: SchemaGuardError) -> JSONResponse:
        rid = _request_id(request)
        log.error("Policy evaluation failed: %s rid=%s path=%s", exc, rid, request.url.path, exc_info=exc)
        payload = {"detail": "Internal Server Error"}
        if rid:
            payload["request_id"] = rid
        return JSONResponse(status_code=500, content=payload)

    for cls in STATUS_CODES:
        app.add_exception_handler(cls, _enforcement)
    app.add_exception_handler(EvaluationError, _internal)
    app.add_exception_handler(CryptoError, _internal)
