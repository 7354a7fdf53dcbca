from .enhance import enhance
from .proxy import EnforcedClient, ModelClient

__all__ = ["EnforcedClient", "ModelClient", "enhance"]
