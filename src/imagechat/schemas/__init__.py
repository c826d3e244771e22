"""Pydantic schemas shared by the server and the client."""

from .generate import ConversationTurn, GenerateRequest, StyleRequest
from .preferences import StudioPreferences, StudioPreferencesUpdate

__all__ = [
    "ConversationTurn",
    "GenerateRequest",
    "StudioPreferences",
    "StudioPreferencesUpdate",
    "StyleRequest",
]
