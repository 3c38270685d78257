"""Installed-mod state stored in SQLite.

Load-modify-save sequences must run inside ``transaction()``, which holds a
process-wide lock so two workflows cannot interleave writes to the same
profile.
"""

from __future__ import annotations

import json
import logging
import threading
from collections.abc import Iterable, Iterator
from contextlib import contextmanager

from sqlalchemy import Engine
from sqlmodel import Session, select

from modweaver.models.install import DeployedFileRow, InstalledModRow
from modweaver.schemas.game import LinkMethod
from modweaver.schemas.mod import InstalledMod, ModKey, UpdatePolicy

logger = logging.getLogger(__name__)

_LOCK = threading.RLock()


def _to_domain(row: InstalledModRow) -> InstalledMod:
    owned = sorted(f.relative_path for f in row.files if f.owned)
    shadowed = sorted(f.relative_path for f in row.files if not f.owned)
    return InstalledMod(
        id=row.mod_id,
        source_id=row.source_id,
        name=row.name,
        version=row.version,
        author=row.author,
        summary=row.summary,
        game_id=row.source_game_id,
        profile_name=row.profile_name,
        enabled=row.enabled,
        deployed=row.deployed,
        link_method=LinkMethod(row.link_method),
        update_policy=UpdatePolicy(row.update_policy),
        file_ids=json.loads(row.file_ids or "[]"),
        owned_paths=owned,
        shadowed_paths=shadowed,
        installed_at=row.installed_at,
    )


class InstalledModRepository:
    def __init__(self, engine: Engine | None = None) -> None:
        if engine is None:
            from modweaver.database import get_engine

            engine = get_engine()
        self.engine = engine

    @contextmanager
    def transaction(self) -> Iterator[Session]:
        """Yield a session that commits on success and rolls back on error."""
        with _LOCK, Session(self.engine) as session:
            try:
                yield session
                session.commit()
            except Exception:
                session.rollback()
                raise

    @contextmanager
    def _scope(self, session: Session | None) -> Iterator[Session]:
        if session is not None:
            yield session
        else:
            with self.transaction() as own:
                yield own

    def _row(self, session: Session, game_id: str, profile_name: str, key: ModKey):
        return session.exec(
            select(InstalledModRow).where(
                InstalledModRow.game_id == game_id,
                InstalledModRow.profile_name == profile_name,
                InstalledModRow.source_id == key.source_id,
                InstalledModRow.mod_id == key.mod_id,
            )
        ).first()

    def list(
        self, game_id: str, profile_name: str, *, session: Session | None = None
    ) -> list[InstalledMod]:
        with self._scope(session) as s:
            rows = s.exec(
                select(InstalledModRow)
                .where(
                    InstalledModRow.game_id == game_id,
                    InstalledModRow.profile_name == profile_name,
                )
                .order_by(InstalledModRow.source_id, InstalledModRow.mod_id)
            ).all()
            return [_to_domain(r) for r in rows]

    def get(
        self, game_id: str, profile_name: str, key: ModKey, *, session: Session | None = None
    ) -> InstalledMod | None:
        with self._scope(session) as s:
            row = self._row(s, game_id, profile_name, key)
            return _to_domain(row) if row else None

    def save(self, game_id: str, mod: InstalledMod, *, session: Session | None = None) -> None:
        """Insert or replace *mod*, including its deployed-file records."""
        with self._scope(session) as s:
            row = self._row(s, game_id, mod.profile_name, mod.key)
            if row is None:
                row = InstalledModRow(
                    game_id=game_id,
                    profile_name=mod.profile_name,
                    source_id=mod.source_id,
                    mod_id=mod.id,
                )
            row.source_game_id = mod.game_id
            row.name = mod.name
            row.version = mod.version
            row.author = mod.author
            row.summary = mod.summary
            row.enabled = mod.enabled
            row.deployed = mod.deployed
            row.link_method = str(mod.link_method)
            row.update_policy = str(mod.update_policy)
            row.file_ids = json.dumps(mod.file_ids)
            if mod.installed_at is not None:
                row.installed_at = mod.installed_at
            row.files = [
                DeployedFileRow(relative_path=p, owned=True) for p in mod.owned_paths
            ] + [DeployedFileRow(relative_path=p, owned=False) for p in mod.shadowed_paths]
            s.add(row)
            s.flush()

    def save_many(
        self, game_id: str, mods: Iterable[InstalledMod], *, session: Session | None = None
    ) -> int:
        count = 0
        with self._scope(session) as s:
            for mod in mods:
                self.save(game_id, mod, session=s)
                count += 1
        logger.debug("Saved %d installed mod(s) for %s", count, game_id)
        return count

    def delete(
        self, game_id: str, profile_name: str, key: ModKey, *, session: Session | None = None
    ) -> bool:
        with self._scope(session) as s:
            row = self._row(s, game_id, profile_name, key)
            if row is None:
                return False
            s.delete(row)
            s.flush()
            return True

    def file_owner(
        self, game_id: str, profile_name: str, path: str, *, session: Session | None = None
    ) -> ModKey | None:
        """Return the mod that owns deployed *path*, if any."""
        with self._scope(session) as s:
            row = s.exec(
                select(InstalledModRow)
                .join(DeployedFileRow)
                .where(
                    InstalledModRow.game_id == game_id,
                    InstalledModRow.profile_name == profile_name,
                    DeployedFileRow.relative_path == path,
                    DeployedFileRow.owned == True,  # noqa: E712
                )
            ).first()
            return ModKey(row.source_id, row.mod_id) if row else None
