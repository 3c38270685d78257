from datetime import datetime
from enum import StrEnum
from typing import NamedTuple

from pydantic import BaseModel, Field

from modweaver.schemas.game import LinkMethod

SOURCE_LOCAL = "local"


class ModKey(NamedTuple):
    """Identity of a mod regardless of version: ``(source_id, mod_id)``."""

    source_id: str
    mod_id: str

    def __str__(self) -> str:
        return f"{self.source_id}:{self.mod_id}"

    @classmethod
    def parse(cls, value: str) -> "ModKey":
        source_id, sep, mod_id = value.partition(":")
        if not sep:
            raise ValueError(f"invalid mod key {value!r}, expected 'source:mod'")
        return cls(source_id, mod_id)


class UpdatePolicy(StrEnum):
    notify = "notify"
    auto = "auto"
    pinned = "pinned"


class ModReference(BaseModel):
    """A profile entry. An empty ``version`` means "latest"."""

    source_id: str
    mod_id: str
    version: str = ""
    file_ids: list[str] = []

    @property
    def key(self) -> ModKey:
        return ModKey(self.source_id, self.mod_id)


class DownloadableFile(BaseModel):
    id: str
    name: str = ""
    file_name: str = ""
    version: str = ""
    size: int = 0
    is_primary: bool = False
    category: str = ""
    description: str = ""
    changelog: str = ""


class Mod(BaseModel):
    """Remote mod metadata as reported by a source."""

    id: str
    source_id: str
    name: str = ""
    version: str = ""
    author: str = ""
    summary: str = ""
    description: str = ""
    game_id: str = ""
    category: str = ""
    downloads: int = 0
    endorsements: int = 0
    dependencies: list[ModReference] = []
    updated_at: datetime | None = None

    @property
    def key(self) -> ModKey:
        return ModKey(self.source_id, self.id)


class InstalledMod(Mod):
    """Remote metadata plus local state for one mod in one profile.

    ``enabled`` is user intent and ``deployed`` is what is on disk; they change
    independently. ``link_method`` is the method actually used at deploy time so
    uninstall can reverse it. ``owned_paths`` are the destination paths (relative
    to the game's mod path) this mod linked; ``shadowed_paths`` are paths it
    provides but another mod won under the override policy.
    """

    profile_name: str = ""
    enabled: bool = True
    deployed: bool = False
    link_method: LinkMethod = LinkMethod.symlink
    update_policy: UpdatePolicy = UpdatePolicy.notify
    file_ids: list[str] = []
    owned_paths: list[str] = []
    shadowed_paths: list[str] = []
    installed_at: datetime | None = None

    @property
    def is_local(self) -> bool:
        return self.source_id == SOURCE_LOCAL


class Update(BaseModel):
    installed: InstalledMod
    new_version: str
    changelog: str = ""
    file_id_replacements: dict[str, str] = Field(default_factory=dict)

    @property
    def key(self) -> ModKey:
        return self.installed.key
