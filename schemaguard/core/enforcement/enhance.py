from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Optional

from schemaguard.core.compiler.policy_models import CompiledSchema
from schemaguard.core.config import EnforcementConfig, load_config

from .proxy import EnforcedClient

_log = logging.getLogger("schemaguard.enforcement")


def enhance(
    client: Any,
    schema: CompiledSchema,
    principal: Any = None,
    *,
    config: Optional[EnforcementConfig] = None,
    now: Optional[datetime] = None,
) -> EnforcedClient:
    """
    Wrap a raw data client so every operation is checked against the schema's
    policies for `principal` (None means anonymous).

    Without an explicit config the environment / config file is read.
    """
    cfg = config or load_config()
    _log.debug("Enhancing %s for principal=%r", type(client).__name__, principal)
    return EnforcedClient(client, schema, principal, config=cfg, now=now)
