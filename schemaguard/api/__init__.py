from .deps import client_dependency
from .errors import STATUS_CODES, install_error_handlers

__all__ = ["STATUS_CODES", "client_dependency", "install_error_handlers"]
