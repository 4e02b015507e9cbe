"""
Tests for configuration discovery.
"""

import os
from pathlib import Path
from unittest.mock import patch

import pytest
import yaml

from featureloop.config import (
    LoopConfig,
    detect_project_type,
    get_claude_binary,
    get_project_commands,
    get_user_config,
    load_config,
    load_settings_overrides,
)


@pytest.fixture
def user_config_file(tmp_path):
    path = tmp_path / ".featureloop" / "config.yaml"
    path.parent.mkdir()
    with patch("featureloop.config.USER_CONFIG_FILE", path):
        yield path


class TestUserConfig:

    def test_missing_file(self, user_config_file):
        assert get_user_config() == {}

    def test_malformed_file_ignored(self, user_config_file):
        user_config_file.write_text("key: [unclosed")

        assert get_user_config() == {}

    def test_claude_binary_priority(self, user_config_file):
        user_config_file.write_text(yaml.dump({"claude_binary": "happy"}))

        with patch.dict(os.environ, {"CLAUDE_BINARY": "from-env"}):
            assert get_claude_binary() == "from-env"

        with patch.dict(os.environ, {}, clear=True):
            assert get_claude_binary() == "happy"

    def test_claude_binary_default(self, user_config_file):
        with patch.dict(os.environ, {}, clear=True):
            assert get_claude_binary() == "claude"


class TestLoopConfig:

    def test_defaults(self):
        config = LoopConfig(claude_binary="claude")

        assert config.router_interval == 2.0
        assert config.supervisor_interval == 5.0
        assert config.phase_timeout == 3600
        assert config.qa_agent == "qa"
        assert config.integrator_agent == "supervisor"
        assert config.request_merge is True

    def test_project_overrides(self, tmp_path):
        (tmp_path / ".featureloop.yaml").write_text(yaml.dump({
            "router_interval": 0.5,
            "qa_agent": "tester",
            "claude_binary": "happy",
            "not_a_setting": 1,
        }))

        config = load_config(tmp_path)

        assert config.router_interval == 0.5
        assert config.qa_agent == "tester"
        assert config.claude_binary == "happy"
        assert not hasattr(config, "not_a_setting")

    @pytest.mark.parametrize("content", ["- just\n- a list\n", "key: [unclosed"])
    def test_bad_override_file(self, tmp_path, content):
        (tmp_path / ".featureloop.yaml").write_text(content)

        assert load_settings_overrides(tmp_path) == {}

    def test_no_override_file(self, tmp_path):
        assert load_settings_overrides(tmp_path) == {}


class TestProjectDetection:

    @pytest.mark.parametrize("indicator,project_type,test_command", [
        ("package.json", "node", "npm test"),
        ("Cargo.toml", "rust", "cargo test"),
        ("go.mod", "go", "go test ./..."),
        ("pyproject.toml", "python", "pytest"),
        ("Makefile", "make", "make test"),
    ])
    def test_indicators(self, tmp_path, indicator, project_type, test_command):
        (tmp_path / indicator).write_text("")

        assert detect_project_type(tmp_path) == project_type
        assert get_project_commands(tmp_path)["test_command"] == test_command

    def test_priority_order(self, tmp_path):
        (tmp_path / "Makefile").write_text("")
        (tmp_path / "package.json").write_text("{}")

        assert detect_project_type(tmp_path) == "node"

    def test_unknown(self, tmp_path):
        assert detect_project_type(tmp_path) is None
        assert get_project_commands(Path(tmp_path)) == {"build_command": None, "test_command": None}
