from __future__ import annotations

from typing import Any, Callable, Optional

from fastapi import Request

from schemaguard.core.compiler.policy_models import CompiledSchema
from schemaguard.core.config import EnforcementConfig
from schemaguard.core.enforcement import EnforcedClient, enhance


def client_dependency(
    schema: CompiledSchema,
    client: Any,
    *,
    config: Optional[EnforcementConfig] = None,
) -> Callable[[Request], EnforcedClient]:
    """
    FastAPI dependency yielding `client` enhanced for the request's principal.

    The principal is read from `request.state.user`, which an authentication
    middleware is expected to set; requests without one are anonymous.

        get_db = client_dependency(schema, raw_client)

        @app.get("/posts")
        def posts(db: EnforcedClient = Depends(get_db)):
            return db.find_many("Post")
    """

    def _dependency(request: Request) -> EnforcedClient:
        principal = getattr(request.state, "user", None)
        return enhance(client, schema, principal, config=config)

    return _dependency
