"""Tests for claw.lib.config and claw.lib.envparse modules."""

from pathlib import Path
from unittest.mock import patch

import pytest

from claw.lib import envparse
from claw.lib.config import (
    CHECKPOINT_CONFIG_FIELDS,
    ConfigError,
    SessionConfig,
    find_workspace_root,
    load_workspace_config,
)


class TestParseEnv:
    """Tests for envparse.parse_env()."""

    def test_basic_pairs_and_comments(self):
        env = envparse.parse_env("# comment\n\nVAULT_PATH=~/vault\nMODEL='opus'\nNAME=\"x y\"\n")
        assert env == {"VAULT_PATH": "~/vault", "MODEL": "opus", "NAME": "x y"}

    def test_missing_equals(self):
        with pytest.raises(ValueError, match="Line 1"):
            envparse.parse_env("JUSTAKEY\n")

    def test_invalid_key(self):
        with pytest.raises(ValueError, match="Invalid key"):
            envparse.parse_env("lower=1\n")

    @pytest.mark.parametrize("value", ["$(rm -rf /)", "`id`", "${HOME}", "a;b", "a && b", "a | b"])
    def test_rejects_shell_injection(self, value):
        with pytest.raises(ValueError, match="Forbidden"):
            envparse.parse_env(f"KEY={value}\n")

    def test_typed_accessors(self):
        env = {"A": "yes", "B": "", "N": "3", "F": "1.5", "BAD": "x"}
        assert envparse.get_bool(env, "A") is True
        assert envparse.get_bool(env, "B", default=True) is True
        assert envparse.get_int(env, "N") == 3
        assert envparse.get_int(env, "MISSING", 7) == 7
        assert envparse.get_float(env, "F") == 1.5
        with pytest.raises(ValueError, match="BAD must be an integer"):
            envparse.get_int(env, "BAD")

    def test_mapping(self):
        env = {"REPOS": "api=../api, web=../web"}
        assert envparse.get_mapping(env, "REPOS") == {"api": "../api", "web": "../web"}
        with pytest.raises(ValueError, match="expected name=value"):
            envparse.get_mapping({"REPOS": "api"}, "REPOS")


class TestLoadWorkspaceConfig:
    """Tests for load_workspace_config()."""

    @patch("claw.lib.config.envparse.load_env")
    def test_defaults(self, mock_load_env):
        mock_load_env.return_value = {"VAULT_PATH": "/vault"}
        config = load_workspace_config(Path("/work/demo"))
        assert config.name == "demo"
        assert config.project_path == "Projects/demo"
        assert config.repos == {"demo": Path("/work/demo").resolve()}
        assert config.model == "sonnet"
        assert config.max_hours == 4.0
        assert config.max_stories is None
        assert config.create_prs is False

    @patch("claw.lib.config.envparse.load_env")
    def test_full_config(self, mock_load_env):
        mock_load_env.return_value = {
            "VAULT_PATH": "/vault",
            "PROJECT_PATH": "Work/shop",
            "REPOS": "api=api,web=web",
            "MODEL": "opus",
            "MAX_HOURS": "0",
            "MAX_STORIES": "3",
            "SKIP_PERMISSIONS": "true",
            "CREATE_PRS": "1",
            "RETRY_BACKOFF": "3",
        }
        config = load_workspace_config(Path("/work/shop"))
        assert config.project_path == "Work/shop"
        assert list(config.repos) == ["api", "web"]
        assert config.repos["api"] == Path("/work/shop/api").resolve()
        assert config.max_hours is None
        assert config.max_stories == 3
        assert config.skip_permissions is True
        assert config.create_prs is True
        assert config.retry_backoff == 3.0

    @patch("claw.lib.config.envparse.load_env")
    def test_vault_path_required(self, mock_load_env):
        mock_load_env.return_value = {}
        with pytest.raises(ConfigError, match="VAULT_PATH"):
            load_workspace_config(Path("/work/demo"))

    @patch("claw.lib.config.envparse.load_env")
    def test_invalid_model(self, mock_load_env):
        mock_load_env.return_value = {"VAULT_PATH": "/v", "MODEL": "gpt"}
        with pytest.raises(ConfigError, match="MODEL must be one of"):
            load_workspace_config(Path("/work/demo"))

    @patch("claw.lib.config.envparse.load_env")
    def test_invalid_number(self, mock_load_env):
        mock_load_env.return_value = {"VAULT_PATH": "/v", "MAX_TURNS": "lots"}
        with pytest.raises(ConfigError, match="MAX_TURNS"):
            load_workspace_config(Path("/work/demo"))

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError, match="No workspace.env"):
            load_workspace_config(tmp_path)

    def test_unknown_repo(self, tmp_path):
        (tmp_path / "workspace.env").write_text("VAULT_PATH=/v\nREPOS=api=api\n")
        config = load_workspace_config(tmp_path)
        with pytest.raises(ConfigError, match="Unknown repository 'web'"):
            config.repo_path("web")


class TestFindWorkspaceRoot:
    """Tests for find_workspace_root()."""

    def test_walks_up(self, tmp_path):
        (tmp_path / "workspace.env").write_text("VAULT_PATH=/v\n")
        nested = tmp_path / "a" / "b"
        nested.mkdir(parents=True)
        assert find_workspace_root(nested) == tmp_path.resolve()

    def test_none_when_absent(self, tmp_path):
        nested = tmp_path / "a"
        nested.mkdir()
        with patch("claw.lib.config.WORKSPACE_FILE", "claw-test-nonexistent.env"):
            assert find_workspace_root(nested) is None


class TestSessionConfig:
    """Tests for SessionConfig checkpoint mapping."""

    def test_to_checkpoint_subset(self):
        data = SessionConfig(max_hours=2.0, skip_permissions=True).to_checkpoint()
        assert set(data) == set(CHECKPOINT_CONFIG_FIELDS)
        assert data["max_hours"] == 2.0

    def test_from_checkpoint_ignores_unknown_and_none_overrides(self):
        config = SessionConfig.from_checkpoint(
            {"max_hours": 1.0, "model": "opus", "legacy_field": True},
            model=None,
            max_stories=2,
        )
        assert config.max_hours == 1.0
        assert config.model == "opus"
        assert config.max_stories == 2


class TestSessionConfigValidate:
    """Tests for SessionConfig.validate()."""

    def test_defaults_are_valid(self):
        SessionConfig().validate()
        SessionConfig(max_hours=0.5, max_stories=1, max_iterations=1, model="haiku").validate()

    @pytest.mark.parametrize("kwargs,field", [
        ({"max_hours": 0}, "max_hours"),
        ({"max_hours": -1.5}, "max_hours"),
        ({"max_stories": 0}, "max_stories"),
        ({"max_stories": -1}, "max_stories"),
        ({"max_iterations": 0}, "max_iterations"),
        ({"max_iterations": -1}, "max_iterations"),
        ({"model": "gpt"}, "model"),
    ])
    def test_rejects_invalid_budgets(self, kwargs, field):
        with pytest.raises(ConfigError, match=field):
            SessionConfig(**kwargs).validate()

    def test_warns_on_long_session_and_many_iterations(self, caplog):
        SessionConfig(max_hours=30, max_iterations=12).validate()
        assert "30h" in caplog.text
        assert "max_iterations=12" in caplog.text
