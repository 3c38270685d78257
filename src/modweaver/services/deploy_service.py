"""Deploying resolved mods from the cache into a game's mod directory.

A deploy walks the resolved order, lowest priority first. File ownership is
decided up front by ``Deployer.plan``: under the strict policy the first mod to
claim a destination path keeps it and a second claim aborts the batch before
the claimant is touched. Under the override policy the later mod wins and the
loser records the path as shadowed.

Installed mods that are not part of the batch still own their deployed paths
and are treated as coming before every mod in the batch.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from pathlib import Path

from modweaver.config import settings
from modweaver.errors import (
    FileConflictError,
    HookError,
    InvalidConfigError,
    ItemFailure,
    LinkFailedError,
    ModweaverError,
    PartialFailureError,
)
from modweaver.schemas.game import DeployMode, Game, HookConfig, LinkMethod
from modweaver.schemas.mod import InstalledMod, ModKey
from modweaver.schemas.profile import Profile
from modweaver.services.dependency_resolver import ResolvedMod
from modweaver.services.hooks import HookContext, HookRunner, resolve_hooks
from modweaver.services.linker import Linker, get_linker
from modweaver.storage.cache import CacheStore
from modweaver.utils.paths import cleanup_empty_dirs, normalize_relative, resolve_under

logger = logging.getLogger(__name__)


class ConflictPolicy(StrEnum):
    strict = "strict"
    override = "override"

    @classmethod
    def parse(cls, value: str) -> ConflictPolicy:
        if not value:
            return cls.strict
        try:
            return cls(value.strip().lower())
        except ValueError:
            raise InvalidConfigError(f"unknown conflict policy: {value!r}") from None


@dataclass
class PathConflict:
    path: str
    owner: ModKey
    claimant: ModKey

    def to_error(self) -> FileConflictError:
        return FileConflictError(self.path, self.owner, self.claimant)


@dataclass
class ModPlan:
    """Planned files for one mod: destination path -> cache relative path."""

    target: ResolvedMod
    files: dict[str, str] = field(default_factory=dict)
    owned: list[str] = field(default_factory=list)
    shadowed: list[str] = field(default_factory=list)
    error: Exception | None = None

    @property
    def key(self) -> ModKey:
        return self.target.key


@dataclass
class DeployPlan:
    mods: list[ModPlan] = field(default_factory=list)
    owners: dict[str, ModKey] = field(default_factory=dict)
    conflicts: list[PathConflict] = field(default_factory=list)
    # Installed mods outside the batch that lose paths to a batch mod.
    external_shadowed: dict[ModKey, list[str]] = field(default_factory=dict)

    def first_conflict_for(self, key: ModKey) -> PathConflict | None:
        for conflict in self.conflicts:
            if conflict.claimant == key:
                return conflict
        return None


@dataclass
class BatchResult:
    """Shared shape of install and uninstall batches.

    ``mods`` holds the new state of every mod the batch changed. ``fatal`` is
    set when the batch stopped early; ``skipped`` then lists the mods that were
    never processed.
    """

    mods: list[InstalledMod] = field(default_factory=list)
    failures: list[ItemFailure] = field(default_factory=list)
    skipped: list[ModKey] = field(default_factory=list)
    hook_warnings: list[HookError] = field(default_factory=list)
    fatal: ModweaverError | None = None

    _summary = "batch failed"

    @property
    def error(self) -> ModweaverError | None:
        if self.fatal is not None:
            return self.fatal
        if self.failures:
            return PartialFailureError(
                f"{self._summary} for {len(self.failures)} mod(s)", self.failures
            )
        return None

    def raise_for_error(self) -> None:
        if err := self.error:
            raise err


@dataclass
class DeployResult(BatchResult):
    deployed: list[ModKey] = field(default_factory=list)
    unchanged: list[ModKey] = field(default_factory=list)
    conflicts: list[PathConflict] = field(default_factory=list)

    _summary = "deploy failed"


@dataclass
class UninstallResult(BatchResult):
    removed: list[ModKey] = field(default_factory=list)
    files_removed: int = 0
    directories_removed: int = 0

    _summary = "uninstall failed"


@dataclass
class VerifyResult:
    present: list[str] = field(default_factory=list)
    missing: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.missing


class _BatchAborted(Exception):
    def __init__(self, error: HookError) -> None:
        self.error = error


class Deployer:
    def __init__(
        self,
        cache: CacheStore,
        hook_runner: HookRunner | None = None,
        conflict_policy: ConflictPolicy | str | None = None,
    ) -> None:
        self.cache = cache
        self.hook_runner = hook_runner
        if conflict_policy is None:
            conflict_policy = settings.conflict_policy
        self.conflict_policy = ConflictPolicy.parse(conflict_policy)

    @staticmethod
    def link_method_for(game: Game, profile: Profile | None) -> LinkMethod:
        """Profile setting first, then the game's, then the configured default."""
        if profile is not None and profile.link_method is not None:
            return profile.link_method
        if game.link_method is not None:
            return game.link_method
        return LinkMethod.parse(settings.default_link_method)

    # -- planning -----------------------------------------------------------

    def _source_files(self, game: Game, target: ResolvedMod) -> dict[str, str]:
        if not target.version:
            raise ValueError(f"no version resolved for {target.key}")
        key = target.key
        cached = self.cache.list_files(game.id, key.source_id, key.mod_id, target.version)

        files: dict[str, str] = {}
        for rel in cached:
            dest = Path(rel).name if game.deploy_mode == DeployMode.copy else rel
            dest = normalize_relative(dest)
            resolve_under(game.mod_path, dest)
            if dest in files:
                # Only reachable in copy mode, where subdirectories are flattened.
                raise FileConflictError(dest, target.key, target.key)
            files[dest] = rel
        return files

    def plan(
        self,
        game: Game,
        targets: Sequence[ResolvedMod],
        installed: Mapping[ModKey, InstalledMod] | None = None,
    ) -> DeployPlan:
        """Work out which mod owns each destination path without touching disk."""
        installed = installed or {}
        batch = {t.key for t in targets}
        plan = DeployPlan()
        owners = plan.owners
        override = self.conflict_policy == ConflictPolicy.override

        for key, mod in installed.items():
            if key in batch or not mod.deployed:
                continue
            for path in mod.owned_paths:
                owners.setdefault(path, key)
        seeded = dict(owners)

        for target in targets:
            mod_plan = ModPlan(target=target)
            plan.mods.append(mod_plan)
            try:
                mod_plan.files = self._source_files(game, target)
            except (FileNotFoundError, ValueError, FileConflictError) as exc:
                mod_plan.error = exc
                continue

            for dest in mod_plan.files:
                owner = owners.get(dest)
                if owner is not None and owner != target.key:
                    plan.conflicts.append(PathConflict(dest, owner, target.key))
                    if override:
                        owners[dest] = target.key
                else:
                    owners[dest] = target.key

        for mod_plan in plan.mods:
            for dest in mod_plan.files:
                if owners[dest] == mod_plan.key:
                    mod_plan.owned.append(dest)
                else:
                    mod_plan.shadowed.append(dest)

        for path, key in seeded.items():
            if owners[path] != key:
                plan.external_shadowed.setdefault(key, []).append(path)
        return plan

    # -- install ------------------------------------------------------------

    async def deploy(
        self,
        game: Game,
        profile: Profile | None,
        targets: Sequence[ResolvedMod],
        installed: Mapping[ModKey, InstalledMod] | None = None,
    ) -> DeployResult:
        """Deploy *targets* in order and return the new state of every touched mod.

        Per-mod failures are collected and the batch continues. A strict-mode
        conflict or a ``before_*`` hook failure stops the batch; mods already
        processed stay deployed.
        """
        installed = installed or {}
        method = self.link_method_for(game, profile)
        hooks = self._hooks(game, profile, "install")
        plan = self.plan(game, targets, installed)
        result = DeployResult(conflicts=list(plan.conflicts))
        strict = self.conflict_policy == ConflictPolicy.strict
        base_ctx = HookContext.for_game(game, "install.before_all")
        done: set[ModKey] = set()

        try:
            await self._run_fatal(hooks.before_all, base_ctx)
        except _BatchAborted as abort:
            result.fatal = abort.error
            result.skipped = [p.key for p in plan.mods]
            return result

        aborted_by_hook = False
        for i, mod_plan in enumerate(plan.mods):
            key = mod_plan.key
            target = mod_plan.target
            previous = installed.get(key)

            conflict = plan.first_conflict_for(key) if strict else None
            if conflict is not None:
                logger.warning("Aborting deploy: %s", conflict.to_error())
                result.fatal = conflict.to_error()
                result.skipped = [p.key for p in plan.mods[i:]]
                break

            if mod_plan.error is not None:
                logger.warning("Cannot deploy %s: %s", key, mod_plan.error)
                result.failures.append(ItemFailure(key, target.name, mod_plan.error))
                continue

            if self._is_current(previous, mod_plan, method):
                logger.debug("%s already deployed at %s", key, target.version)
                result.unchanged.append(key)
                result.mods.append(previous)
                done.add(key)
                continue

            ctx = base_ctx.with_mod("install.before_each", key.mod_id, target.name, target.version)
            try:
                await self._run_fatal(hooks.before_each, ctx)
            except _BatchAborted as abort:
                result.fatal = abort.error
                result.skipped = [p.key for p in plan.mods[i:]]
                aborted_by_hook = True
                break

            state = self._new_state(profile, target, previous, method)
            try:
                self._remove_previous(game, plan, previous, done)
            except LinkFailedError as exc:
                # Old links are still on disk and still recorded as owned.
                logger.warning("Could not remove previous deployment of %s: %s", key, exc)
                result.failures.append(ItemFailure(key, target.name, exc))
                result.mods.append(previous)
                continue

            try:
                self._apply(game, mod_plan, method)
            except LinkFailedError as exc:
                logger.warning("Deploy of %s failed: %s", key, exc)
                result.failures.append(ItemFailure(key, target.name, exc))
                state.deployed = False
                state.owned_paths = []
                state.shadowed_paths = []
            else:
                state.deployed = True
                state.owned_paths = list(mod_plan.owned)
                state.shadowed_paths = list(mod_plan.shadowed)
                result.deployed.append(key)
                done.add(key)
                logger.info(
                    "Deployed '%s' %s (%d files, %d shadowed, %s)",
                    target.name,
                    target.version,
                    len(mod_plan.owned),
                    len(mod_plan.shadowed),
                    method,
                )
            result.mods.append(state)

            after_ctx = ctx.with_mod("install.after_each", key.mod_id, target.name, target.version)
            await self._run_warning(hooks.after_each, after_ctx, result)

        result.mods.extend(self._shadow_external(plan, installed, done))

        if not aborted_by_hook:
            await self._run_warning(
                hooks.after_all, HookContext.for_game(game, "install.after_all"), result
            )
        return result

    @staticmethod
    def _is_current(previous: InstalledMod | None, mod_plan: ModPlan, method: LinkMethod) -> bool:
        return (
            previous is not None
            and previous.deployed
            and previous.version == mod_plan.target.version
            and previous.link_method == method
            and sorted(previous.owned_paths) == sorted(mod_plan.owned)
            and sorted(previous.shadowed_paths) == sorted(mod_plan.shadowed)
        )

    @staticmethod
    def _new_state(
        profile: Profile | None,
        target: ResolvedMod,
        previous: InstalledMod | None,
        method: LinkMethod,
    ) -> InstalledMod:
        if previous is not None:
            state = previous.model_copy(deep=True)
        elif target.mod is not None:
            state = InstalledMod(**target.mod.model_dump())
        else:
            state = InstalledMod(id=target.key.mod_id, source_id=target.key.source_id)

        if target.mod is not None:
            state.name = target.mod.name or state.name
            state.author = target.mod.author or state.author
            state.summary = target.mod.summary or state.summary
            state.dependencies = list(target.mod.dependencies)
        state.version = target.version
        state.link_method = method
        if profile is not None:
            state.profile_name = profile.name
        if target.reference.file_ids:
            state.file_ids = list(target.reference.file_ids)
        state.installed_at = datetime.now(UTC)
        return state

    def _remove_previous(
        self,
        game: Game,
        plan: DeployPlan,
        previous: InstalledMod | None,
        done: set[ModKey],
    ) -> None:
        if previous is None or not previous.owned_paths:
            return
        key = previous.key
        # Paths already relinked by an earlier mod of this batch are not ours anymore.
        stale = [
            p
            for p in previous.owned_paths
            if plan.owners.get(p, key) == key or plan.owners.get(p) not in done
        ]
        self._remove_paths(game, stale, get_linker(previous.link_method))

    def _apply(self, game: Game, mod_plan: ModPlan, method: LinkMethod) -> None:
        """Link every owned file of one mod; on failure undo this mod's links."""
        key = mod_plan.key
        linker = get_linker(method)
        linked: list[str] = []
        version = mod_plan.target.version
        try:
            for dest in mod_plan.owned:
                source = self.cache.get_file_path(
                    game.id, key.source_id, key.mod_id, version, mod_plan.files[dest]
                )
                linker.deploy(source, resolve_under(game.mod_path, dest))
                linked.append(dest)
        except LinkFailedError:
            try:
                self._remove_paths(game, linked, linker)
            except LinkFailedError as cleanup_exc:
                logger.error("Rollback of %s left files behind: %s", key, cleanup_exc)
            raise

    @staticmethod
    def _shadow_external(
        plan: DeployPlan, installed: Mapping[ModKey, InstalledMod], done: set[ModKey]
    ) -> list[InstalledMod]:
        changed: list[InstalledMod] = []
        for key, paths in plan.external_shadowed.items():
            lost = [p for p in paths if plan.owners[p] in done]
            if not lost:
                continue
            state = installed[key].model_copy(deep=True)
            state.owned_paths = [p for p in state.owned_paths if p not in lost]
            state.shadowed_paths = sorted(set(state.shadowed_paths) | set(lost))
            changed.append(state)
            logger.info("%s now shadowed on %d path(s)", key, len(lost))
        return changed

    # -- uninstall ----------------------------------------------------------

    async def uninstall(
        self,
        game: Game,
        profile: Profile | None,
        mods: Sequence[InstalledMod],
    ) -> UninstallResult:
        """Remove the deployed files of *mods*, in the given order.

        Only paths recorded as owned are removed, using the method that created
        them. The cache is never touched.
        """
        hooks = self._hooks(game, profile, "uninstall")
        result = UninstallResult()
        base_ctx = HookContext.for_game(game, "uninstall.before_all")

        try:
            await self._run_fatal(hooks.before_all, base_ctx)
        except _BatchAborted as abort:
            result.fatal = abort.error
            result.skipped = [m.key for m in mods]
            return result

        aborted_by_hook = False
        for i, mod in enumerate(mods):
            ctx = base_ctx.with_mod("uninstall.before_each", mod.id, mod.name, mod.version)
            try:
                await self._run_fatal(hooks.before_each, ctx)
            except _BatchAborted as abort:
                result.fatal = abort.error
                result.skipped = [m.key for m in mods[i:]]
                aborted_by_hook = True
                break

            try:
                files, dirs = self._remove_paths(game, mod.owned_paths, get_linker(mod.link_method))
            except LinkFailedError as exc:
                logger.warning("Uninstall of %s failed: %s", mod.key, exc)
                result.failures.append(ItemFailure(mod.key, mod.name, exc))
            else:
                state = mod.model_copy(deep=True)
                state.deployed = False
                state.owned_paths = []
                state.shadowed_paths = []
                result.mods.append(state)
                result.removed.append(mod.key)
                result.files_removed += files
                result.directories_removed += dirs
                logger.info("Uninstalled '%s' (%d files removed)", mod.name or mod.id, files)

            await self._run_warning(
                hooks.after_each,
                ctx.with_mod("uninstall.after_each", mod.id, mod.name, mod.version),
                result,
            )

        if not aborted_by_hook:
            await self._run_warning(
                hooks.after_all, HookContext.for_game(game, "uninstall.after_all"), result
            )
        return result

    # -- verification -------------------------------------------------------

    def verify(self, game: Game, mod: InstalledMod) -> VerifyResult:
        """Check that every owned path of *mod* is still deployed on disk."""
        linker = get_linker(mod.link_method)
        result = VerifyResult()
        for rel in mod.owned_paths:
            if linker.is_deployed(resolve_under(game.mod_path, rel)):
                result.present.append(rel)
            else:
                result.missing.append(rel)
        return result

    # -- helpers ------------------------------------------------------------

    @staticmethod
    def _remove_paths(game: Game, paths: Sequence[str], linker: Linker) -> tuple[int, int]:
        removed = 0
        for rel in paths:
            target = resolve_under(game.mod_path, rel)
            existed = target.is_symlink() or target.exists()
            linker.undeploy(target)
            removed += int(existed)
        dirs = cleanup_empty_dirs(game.mod_path, paths)
        return removed, dirs

    def _hooks(self, game: Game, profile: Profile | None, operation: str) -> HookConfig:
        if self.hook_runner is None:
            return HookConfig()
        merged = resolve_hooks(game, profile)
        return merged.install if operation == "install" else merged.uninstall

    async def _run_fatal(self, script: str, ctx: HookContext) -> None:
        if not script or self.hook_runner is None:
            return
        try:
            await self.hook_runner.run(script, ctx)
        except HookError as exc:
            logger.error("Hook %s failed, aborting batch: %s", ctx.hook_name, exc)
            raise _BatchAborted(exc) from exc

    async def _run_warning(self, script: str, ctx: HookContext, result: BatchResult) -> None:
        if not script or self.hook_runner is None:
            return
        try:
            await self.hook_runner.run(script, ctx)
        except HookError as exc:
            logger.warning("Hook %s failed: %s", ctx.hook_name, exc)
            result.hook_warnings.append(exc)
