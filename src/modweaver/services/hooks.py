"""Lifecycle hook resolution and execution.

Hooks are user scripts run around install and uninstall batches. Stage order
for a batch is ``before_all`` once, then ``before_each`` / apply /
``after_each`` per mod, then ``after_all`` once.
"""

from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass
from pathlib import Path

from modweaver.config import settings
from modweaver.errors import HookError
from modweaver.schemas.game import Game, GameHooks
from modweaver.schemas.profile import Profile

logger = logging.getLogger(__name__)


def resolve_hooks(game: Game, profile: Profile | None) -> GameHooks:
    """Merge the game's hooks with the profile's tri-state overrides.

    A profile field that is ``None`` inherits the game's script; any explicit
    value, including ``""``, replaces it.
    """
    if profile is None:
        return game.hooks.model_copy(deep=True)
    return GameHooks(
        install=profile.hooks.install.merge_onto(game.hooks.install),
        uninstall=profile.hooks.uninstall.merge_onto(game.hooks.uninstall),
    )


@dataclass(frozen=True, slots=True)
class HookContext:
    game_id: str
    game_path: str
    mod_path: str
    hook_name: str
    mod_id: str = ""
    mod_name: str = ""
    mod_version: str = ""

    @classmethod
    def for_game(cls, game: Game, hook_name: str) -> HookContext:
        return cls(
            game_id=game.id,
            game_path=str(game.install_path),
            mod_path=str(game.mod_path),
            hook_name=hook_name,
        )

    def with_mod(self, hook_name: str, mod_id: str, mod_name: str, version: str) -> HookContext:
        return HookContext(
            game_id=self.game_id,
            game_path=self.game_path,
            mod_path=self.mod_path,
            hook_name=hook_name,
            mod_id=mod_id,
            mod_name=mod_name,
            mod_version=version,
        )

    def env(self) -> dict[str, str]:
        return {
            "MW_GAME_ID": self.game_id,
            "MW_GAME_PATH": self.game_path,
            "MW_MOD_PATH": self.mod_path,
            "MW_MOD_ID": self.mod_id,
            "MW_MOD_NAME": self.mod_name,
            "MW_MOD_VERSION": self.mod_version,
            "MW_HOOK": self.hook_name,
        }


@dataclass(frozen=True, slots=True)
class HookResult:
    stdout: str
    stderr: str
    exit_code: int


class HookRunner:
    def __init__(self, timeout: float | None = None) -> None:
        self.timeout = settings.hook_timeout if timeout is None else timeout

    async def run(self, script: str, ctx: HookContext) -> HookResult:
        """Run *script* with the hook environment.

        Raises:
            HookError: If the script is missing, not executable, exits non-zero,
                or exceeds the timeout.
        """
        path = Path(script).expanduser()
        if not path.is_file():
            raise HookError(ctx.hook_name, script, "script not found")
        if not os.access(path, os.X_OK):
            raise HookError(ctx.hook_name, script, "script not executable")

        logger.debug("Running hook %s: %s", ctx.hook_name, script)
        try:
            proc = await asyncio.create_subprocess_exec(
                str(path),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env={**os.environ, **ctx.env()},
            )
        except OSError as exc:
            raise HookError(ctx.hook_name, script, f"could not start: {exc}") from exc
        try:
            out, err = await asyncio.wait_for(proc.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            raise HookError(ctx.hook_name, script, f"timed out after {self.timeout:g}s") from None

        stdout = out.decode(errors="replace")
        stderr = err.decode(errors="replace")
        if proc.returncode:
            raise HookError(
                ctx.hook_name,
                script,
                f"exited with code {proc.returncode}",
                exit_code=proc.returncode,
                stderr=stderr,
            )
        return HookResult(stdout=stdout, stderr=stderr, exit_code=0)
