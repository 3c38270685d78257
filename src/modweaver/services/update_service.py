"""Update detection for installed mods.

``reconcile_updates`` is the generic per-source check: one ``get_mod`` and one
``get_file_listing`` per mod, sequentially. A mod has an update when the
remote version is newer, or when one of its recorded file ids has been
superseded by a newer file even though the mod version did not change.

``check_updates`` fans a mixed list of installed mods out to their sources.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from dataclasses import dataclass, field

from modweaver.errors import ItemFailure, PartialFailureError, SourceNotFoundError
from modweaver.schemas.mod import InstalledMod, ModKey, Update, UpdatePolicy
from modweaver.sources.base import FileListing, ModSource, ProgressCallback
from modweaver.sources.registry import SourceRegistry
from modweaver.utils.versions import is_newer_version

logger = logging.getLogger(__name__)


@dataclass
class UpdateCheckResult:
    updates: list[Update] = field(default_factory=list)
    failures: list[ItemFailure] = field(default_factory=list)
    cancelled: bool = False
    total_checked: int = 0

    @property
    def keys(self) -> list[ModKey]:
        return [u.key for u in self.updates]

    @property
    def error(self) -> PartialFailureError | None:
        if not self.failures:
            return None
        return PartialFailureError(
            f"update check skipped {len(self.failures)} mod(s)", self.failures
        )

    def raise_for_error(self) -> None:
        if err := self.error:
            raise err

    def merge(self, other: UpdateCheckResult) -> None:
        self.updates.extend(other.updates)
        self.failures.extend(other.failures)
        self.total_checked += other.total_checked
        self.cancelled = self.cancelled or other.cancelled


def _is_cancelled(cancel_event: asyncio.Event | None) -> bool:
    return cancel_event is not None and cancel_event.is_set()


def detect_update(
    installed: InstalledMod, remote_version: str, listing: FileListing
) -> Update | None:
    """Compare one installed mod against freshly fetched remote state."""
    version_newer = is_newer_version(installed.version, remote_version)
    replacements = {
        fid: listing.supersedes[fid] for fid in installed.file_ids if fid in listing.supersedes
    }
    if not version_newer and not replacements:
        return None

    new_version = remote_version
    if replacements and not version_newer:
        files = listing.by_id()
        for fid in installed.file_ids:
            new_file = files.get(replacements.get(fid, ""))
            if new_file is not None and new_file.version:
                new_version = new_file.version
                break

    changelog = ""
    for f in listing.files:
        if f.is_primary and f.changelog:
            changelog = f.changelog
            break
        if not changelog and f.changelog:
            changelog = f.changelog

    return Update(
        installed=installed,
        new_version=new_version,
        changelog=changelog,
        file_id_replacements=replacements,
    )


async def reconcile_updates(
    source: ModSource,
    installed: Sequence[InstalledMod],
    *,
    cancel_event: asyncio.Event | None = None,
    progress: ProgressCallback | None = None,
) -> UpdateCheckResult:
    """Check *installed* mods of one source, collecting per-mod failures.

    Cancellation is observed between mods; the partial result is returned
    with ``cancelled`` set.
    """
    result = UpdateCheckResult()
    total = len(installed)
    for index, mod in enumerate(installed, start=1):
        if _is_cancelled(cancel_event):
            result.cancelled = True
            logger.info("Update check for %s cancelled after %d mod(s)", source.id, index - 1)
            break

        if progress is not None:
            progress(index, total, mod.name)
        result.total_checked += 1

        try:
            remote = await source.get_mod(mod.game_id, mod.id)
            listing = await source.get_file_listing(remote)
        except Exception as exc:
            logger.warning("Update check failed for %s: %s", mod.key, exc)
            result.failures.append(ItemFailure(mod.key, mod.name, exc))
            continue

        update = detect_update(mod, remote.version, listing)
        if update is not None:
            logger.debug("%s: %s -> %s", mod.key, mod.version, update.new_version)
            result.updates.append(update)

    return result


def checkable_mods(installed: Sequence[InstalledMod]) -> list[InstalledMod]:
    """Mods that can be checked remotely: not pinned and not local."""
    return [m for m in installed if m.update_policy != UpdatePolicy.pinned and not m.is_local]


def auto_update_mods(installed: Sequence[InstalledMod]) -> list[InstalledMod]:
    return [m for m in installed if m.update_policy == UpdatePolicy.auto]


async def check_updates(
    registry: SourceRegistry,
    installed: Sequence[InstalledMod],
    *,
    cancel_event: asyncio.Event | None = None,
    progress: ProgressCallback | None = None,
) -> UpdateCheckResult:
    """Check a mixed list of installed mods across every source they come from."""
    by_source: dict[str, list[InstalledMod]] = {}
    for mod in checkable_mods(installed):
        by_source.setdefault(mod.source_id, []).append(mod)

    result = UpdateCheckResult()
    for source_id in sorted(by_source):
        if _is_cancelled(cancel_event):
            result.cancelled = True
            break

        mods = by_source[source_id]
        try:
            source = registry.get(source_id)
        except SourceNotFoundError as exc:
            logger.warning("Skipping %d mod(s) from %s: %s", len(mods), source_id, exc)
            result.failures.extend(ItemFailure(m.key, m.name, exc) for m in mods)
            continue

        result.merge(
            await source.check_updates(mods, cancel_event=cancel_event, progress=progress)
        )

    logger.info(
        "Update check: %d update(s), %d failure(s) across %d source(s)",
        len(result.updates),
        len(result.failures),
        len(by_source),
    )
    return result
