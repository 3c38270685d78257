import pytest
from sqlmodel import SQLModel, create_engine
from sqlmodel.pool import StaticPool

import modweaver.models  # noqa: F401 - register all tables
from modweaver.errors import ModNotFoundError
from modweaver.repository import InstalledModRepository
from modweaver.schemas.game import Game
from modweaver.schemas.mod import DownloadableFile, Mod, ModReference
from modweaver.sources.base import FileListing, ModSource, SearchQuery
from modweaver.sources.registry import SourceRegistry
from modweaver.storage.cache import CacheStore


class FakeSource(ModSource):
    """In-memory backend with call recording and injectable failures."""

    def __init__(self, source_id: str = "fake") -> None:
        self._id = source_id
        self.mods: dict[str, Mod] = {}
        self.deps: dict[str, list[ModReference]] = {}
        self.listings: dict[str, FileListing] = {}
        self.errors: dict[str, Exception] = {}
        self.calls: list[tuple[str, str]] = []

    @property
    def id(self) -> str:
        return self._id

    @property
    def name(self) -> str:
        return f"Fake {self._id}"

    def add(self, mod_id: str, version: str = "1.0.0", deps=(), name: str = "") -> Mod:
        mod = Mod(
            id=mod_id,
            source_id=self._id,
            name=name or f"Mod {mod_id}",
            version=version,
            game_id="testgame",
        )
        self.mods[mod_id] = mod
        self.deps[mod_id] = [
            d if isinstance(d, ModReference) else ModReference(source_id=self._id, mod_id=d)
            for d in deps
        ]
        return mod

    async def search(self, query: SearchQuery) -> list[Mod]:
        return [m for m in self.mods.values() if query.query.lower() in m.name.lower()]

    async def get_mod(self, game_id: str, mod_id: str) -> Mod:
        self.calls.append(("get_mod", mod_id))
        if mod_id in self.errors:
            raise self.errors[mod_id]
        if mod_id not in self.mods:
            raise ModNotFoundError(f"mod {mod_id} not found")
        return self.mods[mod_id]

    async def get_dependencies(self, mod: Mod) -> list[ModReference]:
        self.calls.append(("get_dependencies", mod.id))
        return list(self.deps.get(mod.id, []))

    async def get_mod_files(self, mod: Mod) -> list[DownloadableFile]:
        return self.listings.get(mod.id, FileListing()).files

    async def get_file_listing(self, mod: Mod) -> FileListing:
        self.calls.append(("get_file_listing", mod.id))
        return self.listings.get(mod.id, FileListing())

    async def get_download_url(self, mod: Mod, file_id: str) -> str:
        return f"https://downloads.invalid/{mod.id}/{file_id}"


@pytest.fixture
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(eng)
    return eng


@pytest.fixture
def repository(engine):
    return InstalledModRepository(engine)


@pytest.fixture
def game(tmp_path):
    install = tmp_path / "game"
    mods = install / "mods"
    mods.mkdir(parents=True)
    return Game(id="testgame", name="Test Game", install_path=install, mod_path=mods)


@pytest.fixture
def cache(tmp_path):
    return CacheStore(tmp_path / "cache")


@pytest.fixture
def fake_source():
    return FakeSource()


@pytest.fixture
def registry(fake_source):
    reg = SourceRegistry()
    reg.register(fake_source)
    return reg


@pytest.fixture
def make_source():
    return FakeSource
