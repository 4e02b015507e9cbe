"""
Configuration discovery for featureloop.

Handles the per-project `.featureloop.yaml` overrides, the global user
config at ~/.featureloop/config.yaml, and project type detection used by
the standards phase.
"""

import logging
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

logger = logging.getLogger(__name__)


USER_CONFIG_FILE = Path.home() / ".featureloop" / "config.yaml"
PROJECT_CONFIG_NAME = ".featureloop.yaml"

# Project type detection priority
# Format: (indicator_file, project_type, build_command, test_command)
PROJECT_INDICATORS = [
    ("package.json", "node", "npm run build", "npm test"),
    ("Cargo.toml", "rust", "cargo build", "cargo test"),
    ("go.mod", "go", "go build ./...", "go test ./..."),
    ("pyproject.toml", "python", "pip install -e . -q", "pytest"),
    ("setup.py", "python", "pip install -e . -q", "pytest"),
    ("requirements.txt", "python", None, "pytest"),
    ("Makefile", "make", "make", "make test"),
    ("CMakeLists.txt", "cmake", "cmake --build .", "ctest"),
]


def get_user_config() -> Dict[str, Any]:
    """
    Get global user configuration.

    Returns:
        Configuration dict (empty if the file is missing or unreadable)
    """
    if not USER_CONFIG_FILE.exists():
        return {}

    try:
        with open(USER_CONFIG_FILE) as f:
            return yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        logger.warning(f"Ignoring unreadable user config {USER_CONFIG_FILE}: {e}")
        return {}


def get_user_config_value(key: str) -> Optional[str]:
    """Get a specific user configuration value, or None if unset."""
    value = get_user_config().get(key)
    return str(value) if value is not None else None


def get_claude_binary() -> str:
    """
    Get the agent binary to use for spawning sessions.

    Priority (highest to lowest):
    1. CLAUDE_BINARY environment variable
    2. Global user config (claude_binary)
    3. Default: "claude"
    """
    env_binary = os.environ.get("CLAUDE_BINARY")
    if env_binary:
        return env_binary

    configured = get_user_config_value("claude_binary")
    if configured:
        return configured

    return "claude"


@dataclass
class LoopConfig:
    """Tunable settings for one project run."""
    state_dir: str = ".featureloop"
    session_prefix: str = "featureloop"
    router_interval: float = 2.0
    supervisor_interval: float = 5.0
    phase_timeout: int = 3600  # 1 hour
    send_retries: int = 3
    send_retry_delay: float = 0.5
    command_timeout: int = 30
    agent_boot_delay: float = 2.0
    launch_stagger: float = 1.0
    qa_agent: str = "qa"
    integrator_agent: str = "supervisor"
    request_merge: bool = True
    remove_workspaces_on_complete: bool = True
    stop_agents_on_complete: bool = True
    auto_pr: bool = False
    pr_target_branch: str = "main"
    claude_binary: str = field(default_factory=get_claude_binary)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LoopConfig":
        """Build a config from a mapping, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            logger.warning(f"Ignoring unknown config keys: {', '.join(unknown)}")
        return cls(**{k: v for k, v in data.items() if k in known})


def load_settings_overrides(working_dir: Optional[Path] = None) -> dict:
    """
    Load settings overrides from .featureloop.yaml if present.

    Args:
        working_dir: Directory to check. Defaults to cwd.

    Returns:
        Dict of setting overrides, or empty dict if no file.
    """
    working_dir = Path(working_dir) if working_dir is not None else Path.cwd()

    override_file = working_dir / PROJECT_CONFIG_NAME
    if not override_file.exists():
        return {}

    try:
        overrides = yaml.safe_load(override_file.read_text())
    except yaml.YAMLError as e:
        logger.warning(f"Ignoring malformed {override_file}: {e}")
        return {}

    if not isinstance(overrides, dict):
        return {}
    return overrides


def load_config(working_dir: Optional[Path] = None) -> LoopConfig:
    """Load the LoopConfig for a project: defaults overlaid with .featureloop.yaml."""
    return LoopConfig.from_dict(load_settings_overrides(working_dir))


def detect_project_type(working_dir: Optional[Path] = None) -> Optional[str]:
    """
    Detect the project type based on indicator files.

    Returns:
        Project type string (e.g., "python", "node", "rust") or None if unknown.
    """
    working_dir = Path(working_dir) if working_dir is not None else Path.cwd()

    for indicator_file, project_type, _, _ in PROJECT_INDICATORS:
        if (working_dir / indicator_file).exists():
            return project_type

    return None


def get_project_commands(working_dir: Optional[Path] = None) -> dict:
    """
    Get recommended build/test commands based on detected project type.

    Returns:
        Dict with 'build_command' and 'test_command' keys (values may be None).
    """
    working_dir = Path(working_dir) if working_dir is not None else Path.cwd()

    for indicator_file, _, build_cmd, test_cmd in PROJECT_INDICATORS:
        if (working_dir / indicator_file).exists():
            return {
                "build_command": build_cmd,
                "test_command": test_cmd,
            }

    return {
        "build_command": None,
        "test_command": None,
    }
