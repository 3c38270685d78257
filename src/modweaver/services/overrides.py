"""Profile-level file overrides written into the game directory after a deploy."""

import logging
from pathlib import Path

from modweaver.errors import InvalidConfigError
from modweaver.schemas.game import Game
from modweaver.schemas.profile import Profile
from modweaver.utils.paths import resolve_under

logger = logging.getLogger(__name__)


def apply_profile_overrides(game: Game, profile: Profile) -> list[Path]:
    """Write each of the profile's override files under the game install path.

    Returns the written paths in sorted order.

    Raises:
        InvalidConfigError: If an override path is absolute or leaves the
            install directory. Nothing is written in that case.
    """
    targets: list[tuple[Path, bytes]] = []
    for rel in sorted(profile.overrides):
        try:
            targets.append((resolve_under(game.install_path, rel), profile.overrides[rel]))
        except ValueError as exc:
            raise InvalidConfigError(
                f"invalid override path in profile {profile.name!r}: {exc}"
            ) from exc

    written: list[Path] = []
    for target, content in targets:
        target.parent.mkdir(parents=True, exist_ok=True)
        # Never write through a link into the mod cache.
        if target.is_symlink():
            target.unlink()
        target.write_bytes(content)
        written.append(target)

    if written:
        logger.info("Applied %d override file(s) for profile '%s'", len(written), profile.name)
    return written
