from datetime import UTC, datetime

from sqlalchemy import UniqueConstraint
from sqlmodel import Column, Field, Relationship, SQLModel, Text


class InstalledModRow(SQLModel, table=True):
    """Persisted state of one mod in one profile of one game."""

    __tablename__ = "installed_mods"
    __table_args__ = (
        UniqueConstraint("game_id", "profile_name", "source_id", "mod_id", name="uq_installed_mod"),
    )

    id: int | None = Field(default=None, primary_key=True)
    game_id: str = Field(index=True)
    profile_name: str = Field(index=True)
    source_id: str
    mod_id: str
    source_game_id: str = ""
    name: str = ""
    version: str = ""
    author: str = ""
    summary: str = ""
    enabled: bool = True
    deployed: bool = False
    link_method: str = "symlink"
    update_policy: str = "notify"
    # JSON-encoded list of backend file ids.
    file_ids: str = Field(default="[]", sa_column=Column(Text))
    installed_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    files: list["DeployedFileRow"] = Relationship(
        back_populates="installed_mod",
        cascade_delete=True,
    )


class DeployedFileRow(SQLModel, table=True):
    __tablename__ = "deployed_files"

    id: int | None = Field(default=None, primary_key=True)
    installed_mod_id: int = Field(foreign_key="installed_mods.id", index=True, ondelete="CASCADE")
    relative_path: str = Field(index=True)
    owned: bool = True

    installed_mod: InstalledModRow | None = Relationship(back_populates="files")
