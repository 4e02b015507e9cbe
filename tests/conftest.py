"""
Shared fixtures: a project layout under tmp_path, a recording agent host
and an in-memory workspace manager. No test talks to tmux, git or a real
agent.
"""

import json
import shutil
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Dict, List, Optional

import pytest

from featureloop.config import LoopConfig
from featureloop.hosts.base import AgentHandle, AgentHost, AgentLaunchError
from featureloop.hosts.oneshot import RunResult
from featureloop.layout import ProjectLayout
from featureloop.ledger import StatusLedger
from featureloop.workspace import Workspace, WorkspaceError, WorkspaceManager


class RecordingHost(AgentHost):
    """AgentHost that records every input instead of typing it anywhere."""

    def __init__(self, alive=(), send_retries: int = 1):
        super().__init__(send_retries=send_retries, send_retry_delay=0, sleep=lambda _: None)
        self.alive = set(alive)
        self.refuse = set()  # agents whose sends fail
        self.broken = set()  # agents whose launch fails
        self.cleaned_up = False
        self.sent = []  # (agent_id, text, submit)
        self.started = []  # (agent_id, workdir, env)
        self.stopped = []
        self.prompts = []
        self.actions: List[Callable[[str], RunResult]] = []

    def start(self, agent_id, workdir, env=None, initial_input=None):
        handle = self.resolve(agent_id)
        if agent_id in self.broken:
            raise AgentLaunchError(f"Could not start {agent_id}")
        if agent_id in self.alive:
            return handle
        self.alive.add(agent_id)
        self.started.append((agent_id, Path(workdir), dict(env or {})))
        if initial_input:
            self.send_lines(handle, initial_input)
        return handle

    def resolve(self, agent_id):
        return AgentHandle(agent_id=agent_id, target=f"test:{agent_id}")

    def is_alive(self, handle):
        return handle.agent_id in self.alive

    def stop(self, handle):
        self.alive.discard(handle.agent_id)
        self.stopped.append(handle.agent_id)

    def _send_once(self, handle, text, submit):
        if handle.agent_id in self.refuse:
            return False
        self.sent.append((handle.agent_id, text, submit))
        return True

    def cleanup(self):
        self.cleaned_up = True
        for agent_id in sorted(self.alive):
            self.stop(self.resolve(agent_id))

    def run_to_completion(self, prompt, on_progress=None, workdir=None):
        self.prompts.append(prompt)
        if on_progress is not None:
            on_progress("Write: artifact")
        if self.actions:
            return self.actions.pop(0)(prompt)
        return RunResult(success=True, exit_code=0)

    def typed(self, agent_id: str) -> List[str]:
        """Lines typed into one agent, in order."""
        return [text for target, text, _ in self.sent if target == agent_id]


class MemoryWorkspaces(WorkspaceManager):
    """Workspaces as plain directories, no git."""

    def __init__(self, layout: ProjectLayout):
        self.layout = layout
        self.created: List[str] = []
        self.removed: List[str] = []
        self.broken: set = set()  # features whose workspace cannot be created

    def create(self, feature_id):
        if feature_id in self.broken:
            raise WorkspaceError(f"Could not create workspace for {feature_id}")
        path = self.layout.workspace(feature_id)
        created = not path.is_dir()
        path.mkdir(parents=True, exist_ok=True)
        StatusLedger(self.layout.ledger(feature_id)).initialize("Worktree initialized")
        self.created.append(feature_id)
        return Workspace(feature_id, path, self.layout.feature_branch(feature_id), created=created)

    def remove(self, feature_id):
        path = self.layout.workspace(feature_id)
        if not path.exists():
            return False
        shutil.rmtree(path)
        self.removed.append(feature_id)
        return True


@pytest.fixture
def layout(tmp_path):
    """Layout for an empty project directory."""
    project_dir = tmp_path / "shop"
    project_dir.mkdir()
    return ProjectLayout.for_project(project_dir)


@pytest.fixture
def config():
    return LoopConfig(claude_binary="claude", launch_stagger=0, agent_boot_delay=0)


@pytest.fixture
def host():
    return RecordingHost()


@pytest.fixture
def workspaces(layout):
    return MemoryWorkspaces(layout)


@pytest.fixture
def write_ledger(layout):
    """Write ledger lines for a feature: write_ledger("x", "IN_PROGRESS", "COMPLETE")."""
    start = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)

    def _write(feature_id: str, *statuses: str, raw: Optional[List[str]] = None) -> Path:
        path = layout.ledger(feature_id)
        path.parent.mkdir(parents=True, exist_ok=True)
        existing = len(path.read_text().splitlines()) if path.exists() else 0
        lines = [
            f"{(start + timedelta(minutes=existing + i)).isoformat()} [{status}] step {existing + i}"
            for i, status in enumerate(statuses)
        ]
        lines.extend(raw or [])
        with open(path, "a") as f:
            f.write("".join(line + "\n" for line in lines))
        return path

    return _write


@pytest.fixture
def feature_list(layout):
    """Register features in specs/.features."""

    def _register(*ids: str) -> Path:
        layout.features_file.parent.mkdir(parents=True, exist_ok=True)
        layout.features_file.write_text("".join(f"{i}\n" for i in ids))
        return layout.features_file

    return _register


@pytest.fixture
def qa_report(layout):
    """Write qa-reports/latest.json from a dict."""
    def _write(data: Dict) -> Path:
        layout.qa_reports_dir.mkdir(parents=True, exist_ok=True)
        layout.qa_report.write_text(json.dumps(data))
        return layout.qa_report

    return _write
