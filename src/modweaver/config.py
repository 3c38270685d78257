import os
import sys
from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _default_data_dir() -> Path:
    if env := os.environ.get("MW_DATA_DIR"):
        return Path(env)
    if sys.platform == "win32":
        base = Path(os.environ.get("LOCALAPPDATA", Path.home() / "AppData" / "Local"))
    else:
        base = Path(os.environ.get("XDG_DATA_HOME", Path.home() / ".local" / "share"))
    return base / "modweaver"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="MW_",
        extra="ignore",
    )

    data_dir: Path = Path("")
    cache_dir: Path = Path("")
    db_path: Path = Path("")
    hook_timeout: float = 60.0
    conflict_policy: str = "strict"
    default_link_method: str = "symlink"
    nexus_api_key: str = ""
    log_level: str = "INFO"

    @model_validator(mode="after")
    def _resolve_data_paths(self) -> "Settings":
        if self.data_dir == Path(""):
            self.data_dir = _default_data_dir()
        if self.cache_dir == Path(""):
            self.cache_dir = self.data_dir / "cache"
        if self.db_path == Path(""):
            self.db_path = self.data_dir / "modweaver.db"
        return self


settings = Settings()
