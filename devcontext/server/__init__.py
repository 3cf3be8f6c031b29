"""Multi-user sync server for DevContext."""

from devcontext.server.app import create_app
from devcontext.server.config import ServerSettings, get_settings
from devcontext.server.db import ServerStore

__all__ = ["ServerSettings", "ServerStore", "create_app", "get_settings"]
