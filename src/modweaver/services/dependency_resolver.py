"""Dependency closure expansion and deterministic install ordering.

Resolution runs in two phases:

1. Expand the profile's entries into the full closure of *required*
   dependencies by asking each mod's source for its metadata and
   requirements. A failed lookup is recorded and expansion continues.
2. Depth-first traversal with three-colour marking over the discovered graph.
   Nodes are emitted in postorder, so dependencies come before their
   dependents. Siblings are visited by profile position first, then by ModKey,
   which makes the order a pure function of the input.

A back-edge aborts the whole resolve with ``DependencyLoopError``. The cycle is
rotated to start at its smallest ModKey so the reported chain does not depend
on which entry the traversal started from.
"""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Sequence
from dataclasses import dataclass, field

from modweaver.errors import DependencyLoopError, ItemFailure, PartialFailureError
from modweaver.schemas.game import Game
from modweaver.schemas.mod import Mod, ModKey, ModReference
from modweaver.sources.registry import SourceRegistry
from modweaver.utils.versions import highest_version

logger = logging.getLogger(__name__)

_WHITE, _GRAY, _BLACK = 0, 1, 2


@dataclass
class ResolvedMod:
    """One node of the install order."""

    reference: ModReference
    mod: Mod | None = None
    explicit: bool = True
    dependencies: list[ModKey] = field(default_factory=list)

    @property
    def key(self) -> ModKey:
        return self.reference.key

    @property
    def version(self) -> str:
        return self.reference.version

    @property
    def name(self) -> str:
        if self.mod and self.mod.name:
            return self.mod.name
        return self.reference.mod_id


@dataclass
class ResolveResult:
    order: list[ResolvedMod] = field(default_factory=list)
    failures: list[ItemFailure] = field(default_factory=list)

    @property
    def keys(self) -> list[ModKey]:
        return [m.key for m in self.order]

    @property
    def error(self) -> PartialFailureError | None:
        if not self.failures:
            return None
        return PartialFailureError(
            f"dependency resolution failed for {len(self.failures)} mod(s)", self.failures
        )

    def raise_for_error(self) -> None:
        if err := self.error:
            raise err


def canonical_cycle(path: Sequence[ModKey]) -> list[ModKey]:
    """Rotate a closed cycle ``[a, b, c, a]`` so it starts at its smallest key."""
    ring = list(path[:-1])
    start = ring.index(min(ring))
    rotated = ring[start:] + ring[:start]
    return rotated + [rotated[0]]


class DependencyResolver:
    def __init__(self, registry: SourceRegistry) -> None:
        self.registry = registry

    async def resolve(self, game: Game, mods: Sequence[ModReference]) -> ResolveResult:
        """Resolve *mods* (in profile order) into a complete install order.

        Raises:
            DependencyLoopError: If the required-dependency graph has a cycle.
        """
        explicit: dict[ModKey, ModReference] = {ref.key: ref for ref in mods}
        priority: dict[ModKey, int] = {ref.key: i for i, ref in enumerate(mods)}

        metadata: dict[ModKey, Mod] = {}
        edges: dict[ModKey, list[ModKey]] = {}
        requested: dict[ModKey, list[str]] = {}
        failures: list[ItemFailure] = []

        pending: deque[ModKey] = deque(explicit)
        seen: set[ModKey] = set()
        while pending:
            key = pending.popleft()
            if key in seen:
                continue
            seen.add(key)

            try:
                source = self.registry.get(key.source_id)
                mod = await source.get_mod(game.source_game_id(key.source_id), key.mod_id)
                deps = await source.get_dependencies(mod)
            except Exception as exc:
                logger.warning("Could not expand dependencies of %s: %s", key, exc)
                failures.append(ItemFailure(key=key, name="", error=exc))
                continue

            metadata[key] = mod
            children: list[ModKey] = []
            for dep in deps:
                if dep.key not in children:
                    children.append(dep.key)
                requested.setdefault(dep.key, []).append(dep.version)
                if dep.key not in seen:
                    pending.append(dep.key)
            edges[key] = children

        order = self._topological_order(list(explicit), edges, priority)

        resolved: list[ResolvedMod] = []
        for key in order:
            mod = metadata.get(key)
            ref = explicit.get(key)
            version = self._pick_version(ref, requested.get(key, []), mod)
            resolved.append(
                ResolvedMod(
                    reference=ModReference(
                        source_id=key.source_id,
                        mod_id=key.mod_id,
                        version=version,
                        file_ids=list(ref.file_ids) if ref else [],
                    ),
                    mod=mod,
                    explicit=ref is not None,
                    dependencies=list(edges.get(key, [])),
                )
            )

        logger.info(
            "Resolved %d mods (%d explicit, %d dependencies, %d lookup failures)",
            len(resolved),
            len(explicit),
            len(resolved) - len(explicit),
            len(failures),
        )
        return ResolveResult(order=resolved, failures=failures)

    @staticmethod
    def _pick_version(ref: ModReference | None, requested: list[str], mod: Mod | None) -> str:
        latest = mod.version if mod else ""
        if ref is not None:
            return ref.version or latest
        if not requested or "" in requested:
            return latest
        return highest_version(requested)

    @staticmethod
    def _topological_order(
        roots: list[ModKey],
        edges: dict[ModKey, list[ModKey]],
        priority: dict[ModKey, int],
    ) -> list[ModKey]:
        unranked = len(priority)

        def tie_break(key: ModKey) -> tuple[int, ModKey]:
            return (priority.get(key, unranked), key)

        state: dict[ModKey, int] = {}
        stack: list[ModKey] = []
        order: list[ModKey] = []

        def visit(key: ModKey) -> None:
            colour = state.get(key, _WHITE)
            if colour == _BLACK:
                return
            if colour == _GRAY:
                cycle = stack[stack.index(key) :] + [key]
                raise DependencyLoopError(canonical_cycle(cycle))

            state[key] = _GRAY
            stack.append(key)
            for dep in sorted(edges.get(key, []), key=tie_break):
                visit(dep)
            stack.pop()
            state[key] = _BLACK
            order.append(key)

        for root in roots:
            visit(root)
        return order
