from enum import StrEnum
from pathlib import Path

from pydantic import BaseModel

from modweaver.errors import InvalidConfigError


class LinkMethod(StrEnum):
    """How cached mod files are materialised in the game's mod directory."""

    symlink = "symlink"
    hardlink = "hardlink"
    copy = "copy"

    @classmethod
    def parse(cls, value: str) -> "LinkMethod":
        """Parse a configured value; empty means the default (symlink)."""
        if not value:
            return cls.symlink
        try:
            return cls(value.strip().lower())
        except ValueError:
            raise InvalidConfigError(f"unknown link method: {value!r}") from None


class DeployMode(StrEnum):
    """``extract``: cache holds unpacked files. ``copy``: the archive is the artifact."""

    extract = "extract"
    copy = "copy"

    @classmethod
    def parse(cls, value: str) -> "DeployMode":
        if not value:
            return cls.extract
        try:
            return cls(value.strip().lower())
        except ValueError:
            raise InvalidConfigError(f"unknown deploy mode: {value!r}") from None


class HookConfig(BaseModel):
    before_all: str = ""
    before_each: str = ""
    after_each: str = ""
    after_all: str = ""

    def is_empty(self) -> bool:
        return not (self.before_all or self.before_each or self.after_each or self.after_all)


class GameHooks(BaseModel):
    install: HookConfig = HookConfig()
    uninstall: HookConfig = HookConfig()

    def is_empty(self) -> bool:
        return self.install.is_empty() and self.uninstall.is_empty()


class Game(BaseModel):
    id: str
    name: str = ""
    install_path: Path
    mod_path: Path
    source_ids: dict[str, str] = {}
    link_method: LinkMethod | None = None
    deploy_mode: DeployMode = DeployMode.extract
    cache_path: Path | None = None
    hooks: GameHooks = GameHooks()

    def source_game_id(self, source_id: str) -> str:
        """Return this game's identifier on *source_id* (falls back to ``id``)."""
        return self.source_ids.get(source_id, self.id)
