"""Tests for runner configuration."""

from pathlib import Path

import pytest

from modrun.auth import AgentFirst, AgentWithKeyName
from modrun.config import RunnerConfig, load_config
from modrun.exceptions import ConfigParseError
from modrun.sync import SemaphoreSync
from modrun.types import Target


class TestRunnerConfig:
    """Tests for RunnerConfig."""

    def test_defaults(self):
        config = RunnerConfig(username="deploy")

        assert config.module_dir == Path("modules")
        assert config.max_connections == 10
        assert config.handshake_timeout == 30.0
        assert config.targets == []

    def test_from_dict(self):
        config = RunnerConfig.from_dict({
            "module_dir": "mods",
            "username": "deploy",
            "max_connections": 3,
            "targets": ["web01", "web02:2222"],
        })

        assert config.module_dir == Path("mods")
        assert config.parsed_targets() == [Target("web01"), Target("web02", 2222)]

    def test_single_target_string(self):
        assert RunnerConfig.from_dict({"targets": "web01"}).targets == ["web01"]

    def test_unknown_key(self):
        with pytest.raises(ConfigParseError, match="Unknown configuration key"):
            RunnerConfig.from_dict({"hosts": ["web01"]})

    @pytest.mark.parametrize(
        "data",
        [{"max_connections": 0}, {"handshake_timeout": 0}, {"targets": {"a": 1}}],
    )
    def test_invalid_values(self, data):
        with pytest.raises(ConfigParseError):
            RunnerConfig.from_dict(data)

    def test_bad_target(self):
        config = RunnerConfig(targets=["web01:notaport"])
        with pytest.raises(ConfigParseError):
            config.parsed_targets()

    def test_merge_ignores_none(self):
        """Test only overrides that were actually given replace values."""
        config = RunnerConfig(username="deploy", max_connections=5)

        merged = config.merge(username=None, max_connections=8, module_dir="other")

        assert merged.username == "deploy"
        assert merged.max_connections == 8
        assert merged.module_dir == Path("other")
        assert config.max_connections == 5

    def test_auth_strategy(self):
        assert isinstance(RunnerConfig(username="deploy").auth_strategy(), AgentFirst)

        auth = RunnerConfig(username="deploy", key_name="ci_key", agent_path="/tmp/a").auth_strategy()
        assert isinstance(auth, AgentWithKeyName)
        assert auth.key_name == "ci_key"
        assert auth.agent_path == "/tmp/a"

    def test_sync(self):
        sync = RunnerConfig(max_connections=4, handshake_timeout=2).sync()

        assert isinstance(sync, SemaphoreSync)
        assert sync.max_connections == 4
        assert sync.handshake_timeout == 2

    def test_remote_options(self):
        options = RunnerConfig(
            known_hosts="~/.ssh/known_hosts", python_interpreter="python3.12", remote_dir="/opt/mr"
        ).remote_options()

        assert options.known_hosts == str(Path("~/.ssh/known_hosts").expanduser())
        assert options.python_interpreter == "python3.12"
        assert options.remote_dir == "/opt/mr"

    def test_known_hosts_unset(self):
        assert RunnerConfig().remote_options().known_hosts is None


class TestLoadConfig:
    """Tests for load_config."""

    def test_load(self, tmp_path):
        path = tmp_path / "modrun.yml"
        path.write_text("username: deploy\nkey_name: ci_key\ntargets:\n  - web01\n")

        config = load_config(path)

        assert config.username == "deploy"
        assert config.key_name == "ci_key"
        assert config.targets == ["web01"]

    def test_empty_file(self, tmp_path):
        path = tmp_path / "modrun.yml"
        path.write_text("")

        assert load_config(path).targets == []

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigParseError, match="not found"):
            load_config(tmp_path / "missing.yml")

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "modrun.yml"
        path.write_text("targets: [web01\n")

        with pytest.raises(ConfigParseError, match="Invalid YAML"):
            load_config(path)

    def test_not_a_mapping(self, tmp_path):
        path = tmp_path / "modrun.yml"
        path.write_text("- web01\n")

        with pytest.raises(ConfigParseError, match="mapping"):
            load_config(path)

    def test_error_names_file(self, tmp_path):
        path = tmp_path / "modrun.yml"
        path.write_text("colour: blue\n")

        with pytest.raises(ConfigParseError) as exc_info:
            load_config(path)

        assert exc_info.value.path == path
        assert str(path) in str(exc_info.value)
