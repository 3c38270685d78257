"""Coordinate-keyed file cache for downloaded and extracted mods.

Layout is ``<base>/<game_id>/<source_id>-<mod_id>/<version>/<relative path>``.
A game-scoped cache drops the ``<game_id>`` level because its base directory
already belongs to one game.
"""

import logging
import shutil
from pathlib import Path

from modweaver.utils.paths import normalize_relative, resolve_under

logger = logging.getLogger(__name__)


class CacheStore:
    def __init__(self, base_path: Path, *, game_scoped: bool = False) -> None:
        self.base_path = Path(base_path)
        self.game_scoped = game_scoped

    @classmethod
    def for_game(cls, default_base: Path, cache_path: Path | None) -> "CacheStore":
        """Use the game's own ``cache_path`` when it has one, else the shared cache."""
        if cache_path:
            return cls(cache_path, game_scoped=True)
        return cls(default_base)

    def mod_path(self, game_id: str, source_id: str, mod_id: str, version: str) -> Path:
        mod_dir = f"{source_id}-{mod_id}"
        if self.game_scoped:
            return self.base_path / mod_dir / version
        return self.base_path / game_id / mod_dir / version

    def exists(self, game_id: str, source_id: str, mod_id: str, version: str) -> bool:
        return self.mod_path(game_id, source_id, mod_id, version).is_dir()

    def store(
        self,
        game_id: str,
        source_id: str,
        mod_id: str,
        version: str,
        relative_path: str,
        content: bytes,
    ) -> Path:
        """Write one file into the cache and return its full path.

        Raises:
            ValueError: If *relative_path* would land outside the mod's cache dir.
        """
        root = self.mod_path(game_id, source_id, mod_id, version)
        root.mkdir(parents=True, exist_ok=True)
        target = resolve_under(root, relative_path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(content)
        return target

    def list_files(self, game_id: str, source_id: str, mod_id: str, version: str) -> list[str]:
        """Return cached files as sorted ``/``-separated relative paths.

        Symlinks inside the cache are skipped so a listing never points outside it.

        Raises:
            FileNotFoundError: If the mod version is not cached.
        """
        root = self.mod_path(game_id, source_id, mod_id, version)
        if not root.is_dir():
            raise FileNotFoundError(f"mod not in cache: {source_id}/{mod_id}@{version}")

        files: list[str] = []
        for path in root.rglob("*"):
            if path.is_symlink() or not path.is_file():
                continue
            files.append(normalize_relative(path.relative_to(root).as_posix()))
        return sorted(files)

    def get_file_path(
        self, game_id: str, source_id: str, mod_id: str, version: str, relative_path: str
    ) -> Path:
        return self.mod_path(game_id, source_id, mod_id, version) / relative_path

    def size(self, game_id: str, source_id: str, mod_id: str, version: str) -> int:
        root = self.mod_path(game_id, source_id, mod_id, version)
        if not root.is_dir():
            return 0
        return sum(p.stat().st_size for p in root.rglob("*") if p.is_file() and not p.is_symlink())

    def delete(self, game_id: str, source_id: str, mod_id: str, version: str) -> None:
        root = self.mod_path(game_id, source_id, mod_id, version)
        if root.exists():
            shutil.rmtree(root)
            logger.info("Deleted cache entry %s/%s@%s", source_id, mod_id, version)
