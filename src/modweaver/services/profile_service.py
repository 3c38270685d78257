"""End-to-end profile workflows: install, uninstall and update checks.

Mods must already be in the cache; this layer resolves, deploys and records
state but never downloads.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path

from modweaver.errors import ModweaverError
from modweaver.repository import InstalledModRepository
from modweaver.schemas.game import Game
from modweaver.schemas.mod import ModKey, ModReference
from modweaver.schemas.profile import Profile
from modweaver.services.dependency_resolver import DependencyResolver, ResolveResult
from modweaver.services.deploy_service import Deployer, DeployResult, UninstallResult
from modweaver.services.overrides import apply_profile_overrides
from modweaver.services.update_service import UpdateCheckResult, check_updates
from modweaver.sources.base import ProgressCallback
from modweaver.sources.registry import SourceRegistry

logger = logging.getLogger(__name__)


@dataclass
class ProfileInstallResult:
    resolved: ResolveResult
    deployed: DeployResult
    overrides: list[Path] = field(default_factory=list)

    @property
    def error(self) -> ModweaverError | None:
        """The deploy error first, since it may be fatal; then resolve failures."""
        return self.deployed.error or self.resolved.error

    def raise_for_error(self) -> None:
        if err := self.error:
            raise err


class ProfileService:
    def __init__(
        self,
        registry: SourceRegistry,
        deployer: Deployer,
        repository: InstalledModRepository,
    ) -> None:
        self.registry = registry
        self.resolver = DependencyResolver(registry)
        self.deployer = deployer
        self.repository = repository

    async def install(self, game: Game, profile: Profile) -> ProfileInstallResult:
        """Resolve and deploy every mod of *profile*, then persist the new states.

        Raises:
            DependencyLoopError: If the profile's dependencies form a cycle.
        """
        resolved = await self.resolver.resolve(game, profile.mods)
        failed = {f.key for f in resolved.failures}
        targets = [m for m in resolved.order if m.key not in failed]

        installed = {m.key: m for m in self.repository.list(game.id, profile.name)}
        deployed = await self.deployer.deploy(game, profile, targets, installed)

        overrides: list[Path] = []
        if deployed.fatal is None:
            overrides = apply_profile_overrides(game, profile)

        with self.repository.transaction() as session:
            self.repository.save_many(game.id, deployed.mods, session=session)
        self._record_in_profile(profile, deployed)

        logger.info(
            "Installed profile '%s': %d deployed, %d unchanged, %d failed",
            profile.name,
            len(deployed.deployed),
            len(deployed.unchanged),
            len(deployed.failures) + len(resolved.failures),
        )
        return ProfileInstallResult(resolved=resolved, deployed=deployed, overrides=overrides)

    @staticmethod
    def _record_in_profile(profile: Profile, deployed: DeployResult) -> None:
        """Upsert every deployed or unchanged mod, appending implicit dependencies."""
        done = {*deployed.deployed, *deployed.unchanged}
        for state in deployed.mods:
            if state.key not in done:
                continue
            profile.upsert_mod(
                ModReference(
                    source_id=state.source_id,
                    mod_id=state.id,
                    version=state.version,
                    file_ids=list(state.file_ids),
                )
            )

    async def uninstall(
        self, game: Game, profile: Profile, keys: Sequence[ModKey]
    ) -> UninstallResult:
        """Undeploy *keys* in the given order and drop them from state and profile."""
        mods = []
        for key in keys:
            mod = self.repository.get(game.id, profile.name, key)
            if mod is None:
                logger.warning("%s is not installed in profile '%s'", key, profile.name)
                continue
            mods.append(mod)

        result = await self.deployer.uninstall(game, profile, mods)

        with self.repository.transaction() as session:
            for key in result.removed:
                self.repository.delete(game.id, profile.name, key, session=session)
        for key in result.removed:
            profile.remove_mod(key)
        return result

    async def check_updates(
        self,
        game: Game,
        profile: Profile,
        *,
        cancel_event: asyncio.Event | None = None,
        progress: ProgressCallback | None = None,
    ) -> UpdateCheckResult:
        installed = self.repository.list(game.id, profile.name)
        return await check_updates(
            self.registry, installed, cancel_event=cancel_event, progress=progress
        )
