import os

import pytest

from modweaver.config import settings
from modweaver.errors import FileConflictError, HookError, PartialFailureError
from modweaver.schemas.game import DeployMode, GameHooks, HookConfig, LinkMethod
from modweaver.schemas.mod import Mod, ModKey, ModReference
from modweaver.schemas.profile import Profile
from modweaver.services.dependency_resolver import ResolvedMod
from modweaver.services.deploy_service import ConflictPolicy, Deployer
from modweaver.services.hooks import HookRunner


def _target(mod_id: str, version: str = "1.0") -> ResolvedMod:
    return ResolvedMod(
        reference=ModReference(source_id="fake", mod_id=mod_id, version=version),
        mod=Mod(id=mod_id, source_id="fake", name=f"Mod {mod_id}", version=version),
    )


def _key(mod_id: str) -> ModKey:
    return ModKey("fake", mod_id)


@pytest.fixture
def stage(cache, game):
    def _stage(mod_id: str, files: dict[str, str], version: str = "1.0"):
        for rel, content in files.items():
            cache.store(game.id, "fake", mod_id, version, rel, content.encode())

    return _stage


@pytest.fixture
def profile():
    return Profile(name="default", game_id="testgame")


@pytest.fixture
def deployer(cache):
    return Deployer(cache, conflict_policy=ConflictPolicy.strict)


@pytest.fixture
def hook_log(tmp_path):
    return tmp_path / "hooks.log"


@pytest.fixture
def hook_script(tmp_path, hook_log):
    def _make(name: str, exit_code: int = 0):
        path = tmp_path / name
        body = f"echo \"$MW_HOOK $MW_MOD_ID\" >> \"{hook_log}\"\nexit {exit_code}\n"
        path.write_text("#!/bin/sh\n" + body)
        path.chmod(0o755)
        return str(path)

    return _make


class TestConflictPolicy:
    def test_parse(self):
        assert ConflictPolicy.parse("") == ConflictPolicy.strict
        assert ConflictPolicy.parse("Override") == ConflictPolicy.override

    def test_default_comes_from_settings(self, cache, monkeypatch):
        monkeypatch.setattr(settings, "conflict_policy", "override")
        assert Deployer(cache).conflict_policy == ConflictPolicy.override


class TestLinkMethodChoice:
    def test_profile_then_game_then_settings(self, game, profile, monkeypatch):
        monkeypatch.setattr(settings, "default_link_method", "copy")
        assert Deployer.link_method_for(game, profile) == LinkMethod.copy

        game.link_method = LinkMethod.hardlink
        assert Deployer.link_method_for(game, profile) == LinkMethod.hardlink

        profile.link_method = LinkMethod.symlink
        assert Deployer.link_method_for(game, profile) == LinkMethod.symlink


class TestDeploy:
    @pytest.mark.asyncio
    async def test_links_cached_files(self, deployer, stage, game, profile):
        stage("A", {"a.txt": "A", "sub/b.txt": "B"})
        result = await deployer.deploy(game, profile, [_target("A")])

        assert result.error is None
        assert result.deployed == [_key("A")]
        assert (game.mod_path / "sub" / "b.txt").is_symlink()
        assert (game.mod_path / "a.txt").read_text() == "A"
        state = result.mods[0]
        assert state.deployed is True
        assert state.owned_paths == ["a.txt", "sub/b.txt"]
        assert state.profile_name == "default"
        assert state.link_method == LinkMethod.symlink

    @pytest.mark.asyncio
    async def test_redeploy_same_version_is_noop(self, deployer, stage, game, profile):
        stage("A", {"a.txt": "A"})
        first = await deployer.deploy(game, profile, [_target("A")])
        installed = {m.key: m for m in first.mods}
        link = game.mod_path / "a.txt"
        before = os.lstat(link).st_ino

        second = await deployer.deploy(game, profile, [_target("A")], installed)
        assert second.unchanged == [_key("A")]
        assert second.deployed == []
        assert os.lstat(link).st_ino == before

    @pytest.mark.asyncio
    async def test_version_change_replaces_files(self, deployer, stage, game, profile):
        stage("A", {"old.txt": "1", "both.txt": "1"}, version="1.0")
        stage("A", {"both.txt": "2", "new.txt": "2"}, version="2.0")
        first = await deployer.deploy(game, profile, [_target("A", "1.0")])
        installed = {m.key: m for m in first.mods}

        second = await deployer.deploy(game, profile, [_target("A", "2.0")], installed)
        assert second.deployed == [_key("A")]
        assert not (game.mod_path / "old.txt").exists()
        assert (game.mod_path / "both.txt").read_text() == "2"
        assert second.mods[0].version == "2.0"

    @pytest.mark.asyncio
    async def test_missing_cache_entry_is_partial_failure(self, deployer, stage, game, profile):
        stage("B", {"b.txt": "B"})
        result = await deployer.deploy(game, profile, [_target("A"), _target("B")])
        assert result.deployed == [_key("B")]
        assert isinstance(result.error, PartialFailureError)
        assert result.failures[0].key == _key("A")

    @pytest.mark.asyncio
    async def test_link_failure_rolls_back_that_mod(self, deployer, stage, game, profile):
        stage("A", {"a.txt": "A", "b.txt": "B"})
        stage("C", {"c.txt": "C"})
        (game.mod_path / "b.txt").mkdir()

        result = await deployer.deploy(game, profile, [_target("A"), _target("C")])
        assert [f.key for f in result.failures] == [_key("A")]
        assert not (game.mod_path / "a.txt").exists()
        assert result.deployed == [_key("C")]
        failed = next(m for m in result.mods if m.key == _key("A"))
        assert failed.deployed is False
        assert failed.owned_paths == []

    @pytest.mark.asyncio
    async def test_copy_deploy_mode_uses_basenames(self, deployer, stage, game, profile):
        game.deploy_mode = DeployMode.copy
        stage("A", {"archives/mod.zip": "zip"})
        result = await deployer.deploy(game, profile, [_target("A")])
        assert result.mods[0].owned_paths == ["mod.zip"]
        assert (game.mod_path / "mod.zip").exists()

    @pytest.mark.asyncio
    async def test_copy_deploy_mode_basename_clash_fails_that_mod(
        self, deployer, stage, game, profile
    ):
        game.deploy_mode = DeployMode.copy
        stage("A", {"x/readme.txt": "x", "y/readme.txt": "y"})
        stage("B", {"b.zip": "B"})
        result = await deployer.deploy(game, profile, [_target("A"), _target("B")])

        assert result.deployed == [_key("B")]
        assert [f.key for f in result.failures] == [_key("A")]
        assert isinstance(result.failures[0].error, FileConflictError)
        assert result.failures[0].error.path == "readme.txt"
        assert not (game.mod_path / "readme.txt").exists()

    @pytest.mark.asyncio
    async def test_hardlink_from_game(self, deployer, stage, game, profile):
        game.link_method = LinkMethod.hardlink
        stage("A", {"a.txt": "A"})
        result = await deployer.deploy(game, profile, [_target("A")])
        target = game.mod_path / "a.txt"
        assert not target.is_symlink()
        assert result.mods[0].link_method == LinkMethod.hardlink


class TestConflicts:
    @pytest.mark.asyncio
    async def test_strict_conflict_aborts_at_claimant(self, deployer, stage, game, profile):
        stage("A", {"shared.txt": "A", "a.txt": "A"})
        stage("B", {"shared.txt": "B"})
        stage("C", {"c.txt": "C"})

        result = await deployer.deploy(game, profile, [_target("A"), _target("B"), _target("C")])
        assert result.deployed == [_key("A")]
        assert result.skipped == [_key("B"), _key("C")]
        assert isinstance(result.error, FileConflictError)
        assert result.error.path == "shared.txt"
        assert result.error.owner == _key("A")
        assert result.error.claimant == _key("B")
        assert (game.mod_path / "shared.txt").read_text() == "A"
        assert not (game.mod_path / "c.txt").exists()

    @pytest.mark.asyncio
    async def test_override_later_mod_wins(self, cache, stage, game, profile):
        deployer = Deployer(cache, conflict_policy=ConflictPolicy.override)
        stage("A", {"shared.txt": "A", "a.txt": "A"})
        stage("B", {"shared.txt": "B"})

        result = await deployer.deploy(game, profile, [_target("A"), _target("B")])
        assert result.error is None
        assert (game.mod_path / "shared.txt").read_text() == "B"
        states = {m.key: m for m in result.mods}
        assert states[_key("A")].owned_paths == ["a.txt"]
        assert states[_key("A")].shadowed_paths == ["shared.txt"]
        assert states[_key("B")].owned_paths == ["shared.txt"]

        uninstalled = await deployer.uninstall(game, profile, [states[_key("A")]])
        assert uninstalled.removed == [_key("A")]
        assert (game.mod_path / "shared.txt").read_text() == "B"
        assert not (game.mod_path / "a.txt").exists()

    @pytest.mark.asyncio
    async def test_installed_mod_outside_batch_counts_as_owner(
        self, deployer, stage, game, profile
    ):
        stage("X", {"shared.txt": "X"})
        stage("B", {"shared.txt": "B"})
        first = await deployer.deploy(game, profile, [_target("X")])
        installed = {m.key: m for m in first.mods}

        result = await deployer.deploy(game, profile, [_target("B")], installed)
        assert isinstance(result.error, FileConflictError)
        assert result.error.owner == _key("X")
        assert (game.mod_path / "shared.txt").read_text() == "X"

    @pytest.mark.asyncio
    async def test_override_shadows_mod_outside_batch(self, cache, stage, game, profile):
        deployer = Deployer(cache, conflict_policy="override")
        stage("X", {"shared.txt": "X", "x.txt": "X"})
        stage("B", {"shared.txt": "B"})
        first = await deployer.deploy(game, profile, [_target("X")])
        installed = {m.key: m for m in first.mods}

        result = await deployer.deploy(game, profile, [_target("B")], installed)
        states = {m.key: m for m in result.mods}
        assert states[_key("X")].owned_paths == ["x.txt"]
        assert states[_key("X")].shadowed_paths == ["shared.txt"]
        assert (game.mod_path / "shared.txt").read_text() == "B"

    def test_plan_previews_conflicts_without_touching_disk(self, deployer, stage, game):
        stage("A", {"shared.txt": "A"})
        stage("B", {"shared.txt": "B"})
        plan = deployer.plan(game, [_target("A"), _target("B")])
        assert [(c.path, c.owner, c.claimant) for c in plan.conflicts] == [
            ("shared.txt", _key("A"), _key("B"))
        ]
        assert plan.owners["shared.txt"] == _key("A")
        assert not (game.mod_path / "shared.txt").exists()


class TestHooks:
    @pytest.fixture
    def deployer(self, cache):
        return Deployer(cache, hook_runner=HookRunner(timeout=10), conflict_policy="strict")

    @pytest.mark.asyncio
    async def test_stage_order(self, deployer, stage, game, profile, hook_script, hook_log):
        game.hooks = GameHooks(
            install=HookConfig(
                before_all=hook_script("ba.sh"),
                before_each=hook_script("be.sh"),
                after_each=hook_script("ae.sh"),
                after_all=hook_script("aa.sh"),
            )
        )
        stage("A", {"a.txt": "A"})
        stage("B", {"b.txt": "B"})
        result = await deployer.deploy(game, profile, [_target("A"), _target("B")])
        assert result.error is None
        assert hook_log.read_text().splitlines() == [
            "install.before_all ",
            "install.before_each A",
            "install.after_each A",
            "install.before_each B",
            "install.after_each B",
            "install.after_all ",
        ]

    @pytest.mark.asyncio
    async def test_before_all_failure_aborts_everything(
        self, deployer, stage, game, profile, hook_script, hook_log
    ):
        game.hooks = GameHooks(
            install=HookConfig(before_all=hook_script("ba.sh", 1), after_all=hook_script("aa.sh"))
        )
        stage("A", {"a.txt": "A"})
        result = await deployer.deploy(game, profile, [_target("A")])
        assert isinstance(result.error, HookError)
        assert result.skipped == [_key("A")]
        assert not (game.mod_path / "a.txt").exists()
        assert hook_log.read_text().splitlines() == ["install.before_all "]

    @pytest.mark.asyncio
    async def test_unstartable_before_all_is_returned_not_raised(
        self, deployer, stage, game, profile, tmp_path
    ):
        script = tmp_path / "hook"
        script.write_text("echo hi\n")
        script.chmod(0o755)
        game.hooks = GameHooks(install=HookConfig(before_all=str(script)))
        stage("A", {"a.txt": "A"})

        result = await deployer.deploy(game, profile, [_target("A")])
        assert isinstance(result.error, HookError)
        assert result.skipped == [_key("A")]
        assert not (game.mod_path / "a.txt").exists()

    @pytest.mark.asyncio
    async def test_before_each_failure_keeps_earlier_mods(
        self, deployer, stage, game, profile, tmp_path
    ):
        script = tmp_path / "be.sh"
        script.write_text('#!/bin/sh\n[ "$MW_MOD_ID" = "B" ] && exit 1\nexit 0\n')
        script.chmod(0o755)
        game.hooks = GameHooks(install=HookConfig(before_each=str(script)))
        stage("A", {"a.txt": "A"})
        stage("B", {"b.txt": "B"})

        result = await deployer.deploy(game, profile, [_target("A"), _target("B")])
        assert result.deployed == [_key("A")]
        assert result.skipped == [_key("B")]
        assert isinstance(result.fatal, HookError)

    @pytest.mark.asyncio
    async def test_after_each_failure_is_a_warning(
        self, deployer, stage, game, profile, hook_script
    ):
        game.hooks = GameHooks(install=HookConfig(after_each=hook_script("ae.sh", 2)))
        stage("A", {"a.txt": "A"})
        stage("B", {"b.txt": "B"})
        result = await deployer.deploy(game, profile, [_target("A"), _target("B")])
        assert result.error is None
        assert result.deployed == [_key("A"), _key("B")]
        assert len(result.hook_warnings) == 2

    @pytest.mark.asyncio
    async def test_after_all_runs_after_conflict_abort(
        self, deployer, stage, game, profile, hook_script, hook_log
    ):
        game.hooks = GameHooks(install=HookConfig(after_all=hook_script("aa.sh")))
        stage("A", {"shared.txt": "A"})
        stage("B", {"shared.txt": "B"})
        result = await deployer.deploy(game, profile, [_target("A"), _target("B")])
        assert isinstance(result.error, FileConflictError)
        assert hook_log.read_text().splitlines() == ["install.after_all "]

    @pytest.mark.asyncio
    async def test_profile_can_disable_game_hook(
        self, deployer, stage, game, profile, hook_script, hook_log
    ):
        from modweaver.schemas.profile import ProfileHookConfig, ProfileHooks

        game.hooks = GameHooks(install=HookConfig(before_all=hook_script("ba.sh", 1)))
        profile.hooks = ProfileHooks(install=ProfileHookConfig(before_all=""))
        stage("A", {"a.txt": "A"})
        result = await deployer.deploy(game, profile, [_target("A")])
        assert result.error is None
        assert not hook_log.exists()

    @pytest.mark.asyncio
    async def test_uninstall_hooks(self, deployer, stage, game, profile, hook_script, hook_log):
        stage("A", {"a.txt": "A"})
        deployed = await deployer.deploy(game, profile, [_target("A")])
        game.hooks = GameHooks(
            uninstall=HookConfig(before_each=hook_script("ube.sh"), after_all=hook_script("uaa.sh"))
        )
        await deployer.uninstall(game, profile, deployed.mods)
        assert hook_log.read_text().splitlines() == [
            "uninstall.before_each A",
            "uninstall.after_all ",
        ]


class TestUninstall:
    @pytest.mark.asyncio
    async def test_removes_owned_files_and_empty_dirs(self, deployer, stage, game, profile, cache):
        stage("A", {"deep/dir/a.txt": "A"})
        deployed = await deployer.deploy(game, profile, [_target("A")])

        result = await deployer.uninstall(game, profile, deployed.mods)
        assert result.removed == [_key("A")]
        assert result.files_removed == 1
        assert result.directories_removed == 2
        assert not (game.mod_path / "deep").exists()
        assert game.mod_path.is_dir()
        assert cache.list_files(game.id, "fake", "A", "1.0") == ["deep/dir/a.txt"]
        assert result.mods[0].deployed is False
        assert result.mods[0].owned_paths == []

    @pytest.mark.asyncio
    async def test_uses_recorded_link_method(self, deployer, stage, game, profile):
        game.link_method = LinkMethod.copy
        stage("A", {"a.txt": "A"})
        deployed = await deployer.deploy(game, profile, [_target("A")])
        game.link_method = LinkMethod.symlink

        result = await deployer.uninstall(game, profile, deployed.mods)
        assert result.error is None
        assert not (game.mod_path / "a.txt").exists()

    @pytest.mark.asyncio
    async def test_unremovable_file_is_partial_failure(self, deployer, stage, game, profile):
        stage("A", {"a.txt": "A"})
        stage("B", {"b.txt": "B"})
        deployed = await deployer.deploy(game, profile, [_target("A"), _target("B")])
        # A user file replaced the symlink; it must not be deleted.
        (game.mod_path / "a.txt").unlink()
        (game.mod_path / "a.txt").write_text("user")

        result = await deployer.uninstall(game, profile, deployed.mods)
        assert [f.key for f in result.failures] == [_key("A")]
        assert result.removed == [_key("B")]
        assert (game.mod_path / "a.txt").read_text() == "user"


class TestVerify:
    @pytest.mark.asyncio
    async def test_reports_missing_paths(self, deployer, stage, game, profile):
        stage("A", {"a.txt": "A", "b.txt": "B"})
        deployed = await deployer.deploy(game, profile, [_target("A")])
        (game.mod_path / "b.txt").unlink()

        check = deployer.verify(game, deployed.mods[0])
        assert check.present == ["a.txt"]
        assert check.missing == ["b.txt"]
        assert check.ok is False
