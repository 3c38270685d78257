"""Profiles: an ordered, per-game selection of mods plus profile-level overrides.

Hook fields on a profile are tri-state. ``None`` inherits the game's script,
``""`` disables the inherited script, and any other value replaces it.
"""

from pydantic import BaseModel, model_validator

from modweaver.errors import InvalidConfigError
from modweaver.schemas.game import HookConfig, LinkMethod
from modweaver.schemas.mod import ModKey, ModReference

HOOK_STAGES = ("before_all", "before_each", "after_each", "after_all")


class HookExplicitFlags(BaseModel):
    before_all: bool = False
    before_each: bool = False
    after_each: bool = False
    after_all: bool = False


class GameHooksExplicit(BaseModel):
    install: HookExplicitFlags = HookExplicitFlags()
    uninstall: HookExplicitFlags = HookExplicitFlags()


class ProfileHookConfig(BaseModel):
    before_all: str | None = None
    before_each: str | None = None
    after_each: str | None = None
    after_all: str | None = None

    @property
    def explicit(self) -> HookExplicitFlags:
        return HookExplicitFlags(
            **{stage: getattr(self, stage) is not None for stage in HOOK_STAGES}
        )

    def merge_onto(self, inherited: HookConfig) -> HookConfig:
        """Apply the explicitly set fields of this config over *inherited*."""
        values = {}
        for stage in HOOK_STAGES:
            own = getattr(self, stage)
            values[stage] = getattr(inherited, stage) if own is None else own
        return HookConfig(**values)


class ProfileHooks(BaseModel):
    install: ProfileHookConfig = ProfileHookConfig()
    uninstall: ProfileHookConfig = ProfileHookConfig()


class Profile(BaseModel):
    """Mods are kept in priority order: index 0 is the lowest priority."""

    name: str
    game_id: str
    mods: list[ModReference] = []
    link_method: LinkMethod | None = None
    is_default: bool = False
    hooks: ProfileHooks = ProfileHooks()
    overrides: dict[str, bytes] = {}

    @model_validator(mode="after")
    def _unique_mod_keys(self) -> "Profile":
        seen: set[ModKey] = set()
        for ref in self.mods:
            if ref.key in seen:
                raise ValueError(f"duplicate mod {ref.key} in profile {self.name!r}")
            seen.add(ref.key)
        return self

    @property
    def hooks_explicit(self) -> GameHooksExplicit:
        return GameHooksExplicit(
            install=self.hooks.install.explicit,
            uninstall=self.hooks.uninstall.explicit,
        )

    def keys(self) -> list[ModKey]:
        return [ref.key for ref in self.mods]

    def index_of(self, key: ModKey) -> int | None:
        for i, ref in enumerate(self.mods):
            if ref.key == key:
                return i
        return None

    def get_mod(self, key: ModKey) -> ModReference | None:
        i = self.index_of(key)
        return self.mods[i] if i is not None else None

    def upsert_mod(self, ref: ModReference) -> None:
        """Replace the entry with the same key in place, or append a new one."""
        i = self.index_of(ref.key)
        if i is None:
            self.mods.append(ref)
        else:
            self.mods[i] = ref

    def remove_mod(self, key: ModKey) -> ModReference | None:
        i = self.index_of(key)
        if i is None:
            return None
        return self.mods.pop(i)

    def reorder(self, keys: list[ModKey]) -> None:
        """Set an explicit new order. *keys* must be a permutation of the current keys."""
        current = self.keys()
        if len(keys) != len(current) or set(keys) != set(current):
            raise InvalidConfigError(
                f"reorder of profile {self.name!r} must list exactly its {len(current)} mods"
            )
        by_key = {ref.key: ref for ref in self.mods}
        self.mods = [by_key[k] for k in keys]
