"""Exception taxonomy shared by the resolver, deployer and update reconciler.

Structurally fatal batch conditions (a dependency cycle, a strict-mode file
conflict, a ``before_all``/``before_each`` hook failure) are represented by
their own types. Per-item failures collected during a batch are joined into a
single ``PartialFailureError``.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from modweaver.schemas.mod import ModKey


class ModweaverError(Exception):
    """Base class for all errors raised by modweaver."""


class NotFoundError(ModweaverError):
    pass


class ModNotFoundError(NotFoundError):
    pass


class GameNotFoundError(NotFoundError):
    pass


class ProfileNotFoundError(NotFoundError):
    pass


class SourceNotFoundError(NotFoundError):
    def __init__(self, source_id: str) -> None:
        self.source_id = source_id
        super().__init__(f"source not found: {source_id}")


class AuthRequiredError(ModweaverError):
    pass


class AuthNotSupportedError(ModweaverError):
    """The backend does not offer the requested authentication flow."""


class InvalidConfigError(ModweaverError):
    pass


class DependencyLoopError(ModweaverError):
    def __init__(self, cycle: Sequence[ModKey]) -> None:
        self.cycle = list(cycle)
        chain = " -> ".join(str(k) for k in self.cycle)
        super().__init__(f"circular dependency detected: {chain}")


class FileConflictError(ModweaverError):
    def __init__(self, path: str, owner: ModKey, claimant: ModKey) -> None:
        self.path = path
        self.owner = owner
        self.claimant = claimant
        super().__init__(f"file conflict on '{path}': owned by {owner}, also claimed by {claimant}")


class DownloadFailedError(ModweaverError):
    pass


class LinkFailedError(ModweaverError):
    def __init__(self, method: str, source: str, target: str, reason: str) -> None:
        self.method = method
        self.source = source
        self.target = target
        self.reason = reason
        super().__init__(f"{method} failed for {target}: {reason}")


class HookError(ModweaverError):
    def __init__(
        self,
        hook_name: str,
        script: str,
        message: str,
        *,
        exit_code: int | None = None,
        stderr: str = "",
    ) -> None:
        self.hook_name = hook_name
        self.script = script
        self.exit_code = exit_code
        self.stderr = stderr
        super().__init__(f"hook {hook_name} ({script}): {message}")


@dataclass(frozen=True, slots=True)
class ItemFailure:
    """One failed item inside a batch, keyed by mod identity."""

    key: ModKey
    name: str
    error: BaseException

    def __str__(self) -> str:
        label = self.name or self.key.mod_id
        return f"{label} (id {self.key}): {self.error}"


class PartialFailureError(ModweaverError):
    """Aggregate of per-item failures returned next to a partial result."""

    def __init__(self, summary: str, failures: Sequence[ItemFailure]) -> None:
        self.summary = summary
        self.failures = list(failures)
        details = "; ".join(str(f) for f in self.failures)
        super().__init__(f"{summary}: {details}" if details else summary)

    @property
    def keys(self) -> list[ModKey]:
        return [f.key for f in self.failures]
