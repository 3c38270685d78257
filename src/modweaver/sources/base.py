"""The capability every hosting backend implements.

The resolver and the update reconciler only talk to backends through
``ModSource``. A backend may override ``check_updates`` with a native
implementation; the default runs the generic reconciler over
``get_mod`` + ``get_file_listing``.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING

from pydantic import BaseModel

from modweaver.errors import AuthNotSupportedError
from modweaver.schemas.mod import DownloadableFile, InstalledMod, Mod, ModReference

if TYPE_CHECKING:
    from modweaver.services.update_service import UpdateCheckResult

ProgressCallback = Callable[[int, int, str], None]
"""Called as ``progress(index, total, mod_name)`` with a 1-based index."""


class SearchQuery(BaseModel):
    game_id: str
    query: str = ""
    category: str = ""
    page: int = 0
    page_size: int = 20


class Token(BaseModel):
    access_token: str
    refresh_token: str = ""
    expires_at: datetime | None = None


@dataclass
class FileListing:
    """A mod's files plus the backend's supersession relation (old id → new id)."""

    files: list[DownloadableFile] = field(default_factory=list)
    supersedes: dict[str, str] = field(default_factory=dict)

    def by_id(self) -> dict[str, DownloadableFile]:
        return {f.id: f for f in self.files}


class ModSource(ABC):
    @property
    @abstractmethod
    def id(self) -> str: ...

    @property
    @abstractmethod
    def name(self) -> str: ...

    # -- discovery ---------------------------------------------------------

    @abstractmethod
    async def search(self, query: SearchQuery) -> list[Mod]: ...

    @abstractmethod
    async def get_mod(self, game_id: str, mod_id: str) -> Mod: ...

    @abstractmethod
    async def get_dependencies(self, mod: Mod) -> list[ModReference]:
        """Return the mods *mod* strictly requires. Optional relations are excluded."""

    # -- downloads ---------------------------------------------------------

    @abstractmethod
    async def get_mod_files(self, mod: Mod) -> list[DownloadableFile]: ...

    async def get_file_listing(self, mod: Mod) -> FileListing:
        return FileListing(files=await self.get_mod_files(mod))

    @abstractmethod
    async def get_download_url(self, mod: Mod, file_id: str) -> str: ...

    # -- updates -----------------------------------------------------------

    async def check_updates(
        self,
        installed: Sequence[InstalledMod],
        *,
        cancel_event: asyncio.Event | None = None,
        progress: ProgressCallback | None = None,
    ) -> UpdateCheckResult:
        from modweaver.services.update_service import reconcile_updates

        return await reconcile_updates(
            self, installed, cancel_event=cancel_event, progress=progress
        )

    # -- authentication ----------------------------------------------------

    def is_authenticated(self) -> bool:
        return False

    def set_api_key(self, key: str) -> None:
        raise AuthNotSupportedError(f"{self.name} does not use API keys")

    async def validate_api_key(self, key: str) -> None:
        raise AuthNotSupportedError(f"{self.name} does not use API keys")

    async def exchange_token(self, code: str) -> Token:
        raise AuthNotSupportedError(f"{self.name} does not support OAuth token exchange")
