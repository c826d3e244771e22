"""Client-local workspace: one database plus one preferences file."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import httpx

from ..repository import StudioRepository
from ..services.preferences import PreferencesStore
from ..services.references import ReferenceList
from .api import StudioApiClient
from .session import EventListener, GenerationSession

DATABASE_FILENAME = "studio.db"
PREFERENCES_FILENAME = "preferences.json"


class Workspace:
    """Owns the storage a generation session needs."""

    def __init__(self, root: Path):
        self.root = root
        self.repository = StudioRepository(root / DATABASE_FILENAME)
        self.preferences = PreferencesStore(root / PREFERENCES_FILENAME)

    async def open(self) -> "Workspace":
        await self.repository.initialize()
        return self

    async def close(self) -> None:
        await self.repository.close()

    async def __aenter__(self) -> "Workspace":
        return await self.open()

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def session(
        self,
        conversation_id: Optional[str] = None,
        *,
        title: Optional[str] = None,
        references: Optional[ReferenceList] = None,
        on_event: Optional[EventListener] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> GenerationSession:
        """Return a session bound to an existing or newly created conversation."""

        conversation_id = await self.repository.create_conversation(
            title, conversation_id=conversation_id
        )
        preferences = self.preferences.load()
        api = StudioApiClient(preferences.server_url, transport=transport)
        return GenerationSession(
            self.repository,
            conversation_id,
            api,
            references=references,
            on_event=on_event,
        )


__all__ = ["Workspace"]
