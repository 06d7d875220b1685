"""Portwarden - vault command line tool integration."""

from .client import (
    BWClient,
    CommandOutput,
    CredentialChannel,
    InteractiveChannel,
    NullChannel,
    ScriptedChannel,
)
from .export_gateway import VaultExportGateway
from .session_key import SessionKeyExtractor
from .session_manager import SessionManager, SessionState
from .throttle import Throttle

__all__ = [
    "BWClient",
    "CommandOutput",
    "CredentialChannel",
    "InteractiveChannel",
    "NullChannel",
    "ScriptedChannel",
    "SessionKeyExtractor",
    "SessionManager",
    "SessionState",
    "Throttle",
    "VaultExportGateway",
]
