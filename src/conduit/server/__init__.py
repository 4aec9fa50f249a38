"""HTTP control API for the workflow engine."""

from conduit.server.app import create_app
from conduit.server.config import ServerSettings

__all__ = ["ServerSettings", "create_app"]
