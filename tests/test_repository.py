import pytest
from sqlmodel import Session, select

from modweaver.models.install import DeployedFileRow
from modweaver.schemas.game import LinkMethod
from modweaver.schemas.mod import InstalledMod, ModKey, UpdatePolicy


def _mod(mod_id: str, profile: str = "default", **kwargs) -> InstalledMod:
    return InstalledMod(
        id=mod_id,
        source_id="nexusmods",
        name=f"Mod {mod_id}",
        version="1.0",
        game_id="skyrimspecialedition",
        profile_name=profile,
        **kwargs,
    )


class TestInstalledModRepository:
    def test_save_and_get_round_trip(self, repository):
        mod = _mod(
            "1",
            deployed=True,
            link_method=LinkMethod.hardlink,
            update_policy=UpdatePolicy.auto,
            file_ids=["10", "11"],
            owned_paths=["b.txt", "a.txt"],
            shadowed_paths=["c.txt"],
        )
        repository.save("skyrim", mod)

        loaded = repository.get("skyrim", "default", ModKey("nexusmods", "1"))
        assert loaded.deployed is True
        assert loaded.link_method == LinkMethod.hardlink
        assert loaded.update_policy == UpdatePolicy.auto
        assert loaded.file_ids == ["10", "11"]
        assert loaded.owned_paths == ["a.txt", "b.txt"]
        assert loaded.shadowed_paths == ["c.txt"]
        assert loaded.game_id == "skyrimspecialedition"

    def test_get_missing_returns_none(self, repository):
        assert repository.get("skyrim", "default", ModKey("nexusmods", "404")) is None

    def test_save_replaces_file_records(self, repository, engine):
        repository.save("skyrim", _mod("1", owned_paths=["old.txt"]))
        repository.save("skyrim", _mod("1", owned_paths=["new.txt"]))

        loaded = repository.get("skyrim", "default", ModKey("nexusmods", "1"))
        assert loaded.owned_paths == ["new.txt"]
        with Session(engine) as session:
            paths = [r.relative_path for r in session.exec(select(DeployedFileRow)).all()]
        assert paths == ["new.txt"]

    def test_list_is_scoped_by_game_and_profile(self, repository):
        repository.save_many("skyrim", [_mod("2"), _mod("1"), _mod("3", profile="other")])
        repository.save("fallout4", _mod("9"))

        mods = repository.list("skyrim", "default")
        assert [m.id for m in mods] == ["1", "2"]

    def test_delete(self, repository):
        repository.save("skyrim", _mod("1"))
        assert repository.delete("skyrim", "default", ModKey("nexusmods", "1")) is True
        assert repository.delete("skyrim", "default", ModKey("nexusmods", "1")) is False
        assert repository.list("skyrim", "default") == []

    def test_file_owner_ignores_shadowed(self, repository):
        repository.save("skyrim", _mod("1", owned_paths=["a.txt"], shadowed_paths=["s.txt"]))
        repository.save("skyrim", _mod("2", owned_paths=["s.txt"]))

        assert repository.file_owner("skyrim", "default", "a.txt") == ModKey("nexusmods", "1")
        assert repository.file_owner("skyrim", "default", "s.txt") == ModKey("nexusmods", "2")
        assert repository.file_owner("skyrim", "default", "none.txt") is None

    def test_transaction_rolls_back_on_error(self, repository):
        with pytest.raises(RuntimeError):
            with repository.transaction() as session:
                repository.save("skyrim", _mod("1"), session=session)
                raise RuntimeError("boom")
        assert repository.list("skyrim", "default") == []
