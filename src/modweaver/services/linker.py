"""Link strategies that materialise cached files in a game's mod directory.

Each strategy wraps filesystem errors in ``LinkFailedError`` tagged with its
method. Hardlinks across filesystems fail rather than falling back to a copy.
"""

from __future__ import annotations

import errno
import logging
import os
import shutil
from pathlib import Path
from typing import Protocol

from modweaver.errors import LinkFailedError
from modweaver.schemas.game import LinkMethod

logger = logging.getLogger(__name__)


class Linker(Protocol):
    method: LinkMethod

    def deploy(self, source: Path, target: Path) -> None: ...

    def undeploy(self, target: Path) -> None: ...

    def is_deployed(self, target: Path, source: Path | None = None) -> bool: ...


_LINKERS: dict[LinkMethod, type[Linker]] = {}


def register_linker(cls: type[Linker]) -> type[Linker]:
    """Class decorator that registers a strategy for its ``method``."""
    _LINKERS[cls.method] = cls
    return cls


def get_linker(method: LinkMethod | str) -> Linker:
    return _LINKERS[LinkMethod(method)]()


def _prepare_target(method: LinkMethod, source: Path, target: Path) -> None:
    """Create the parent directory and clear whatever currently sits at *target*."""
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        if target.is_symlink() or target.is_file():
            target.unlink()
        elif target.is_dir():
            raise LinkFailedError(method, str(source), str(target), "target is a directory")
    except OSError as exc:
        raise LinkFailedError(method, str(source), str(target), str(exc)) from exc


@register_linker
class SymlinkLinker:
    method = LinkMethod.symlink

    def deploy(self, source: Path, target: Path) -> None:
        _prepare_target(self.method, source, target)
        try:
            os.symlink(source.absolute(), target)
        except OSError as exc:
            raise LinkFailedError(self.method, str(source), str(target), str(exc)) from exc

    def undeploy(self, target: Path) -> None:
        if not target.is_symlink():
            if target.exists():
                raise LinkFailedError(self.method, "", str(target), "not a symlink")
            return
        try:
            target.unlink()
        except OSError as exc:
            raise LinkFailedError(self.method, "", str(target), str(exc)) from exc

    def is_deployed(self, target: Path, source: Path | None = None) -> bool:
        if not target.is_symlink():
            return False
        if source is None:
            return True
        return Path(os.readlink(target)) == source.absolute()


@register_linker
class HardlinkLinker:
    method = LinkMethod.hardlink

    def deploy(self, source: Path, target: Path) -> None:
        _prepare_target(self.method, source, target)
        try:
            os.link(source, target)
        except OSError as exc:
            reason = str(exc)
            if exc.errno == errno.EXDEV:
                reason = "source and target are on different filesystems"
            raise LinkFailedError(self.method, str(source), str(target), reason) from exc

    def undeploy(self, target: Path) -> None:
        try:
            target.unlink(missing_ok=True)
        except OSError as exc:
            raise LinkFailedError(self.method, "", str(target), str(exc)) from exc

    def is_deployed(self, target: Path, source: Path | None = None) -> bool:
        if target.is_symlink() or not target.is_file():
            return False
        if source is None:
            return True
        try:
            return os.path.samefile(source, target)
        except OSError:
            return False


@register_linker
class CopyLinker:
    method = LinkMethod.copy

    def deploy(self, source: Path, target: Path) -> None:
        # A symlink left at target by another method must not be written through.
        _prepare_target(self.method, source, target)
        try:
            shutil.copy2(source, target)
        except OSError as exc:
            raise LinkFailedError(self.method, str(source), str(target), str(exc)) from exc

    def undeploy(self, target: Path) -> None:
        try:
            target.unlink(missing_ok=True)
        except OSError as exc:
            raise LinkFailedError(self.method, "", str(target), str(exc)) from exc

    def is_deployed(self, target: Path, source: Path | None = None) -> bool:
        return target.is_file() and not target.is_symlink()
