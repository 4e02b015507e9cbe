"""
Isolated per-feature workspaces.

The core only needs "create an isolated copy for feature X" and "remove
it". GitWorkspaceManager provides both with git worktrees, one branch
(feature/<id>) per feature off a recorded base branch.
"""

import logging
import shutil
import subprocess
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from .layout import FEATURE_SPEC_NAME, ProjectLayout
from .ledger import StatusLedger

logger = logging.getLogger(__name__)

# Copied from the project root into each workspace when present
SHARED_FILES = (".mcp.json", "CLAUDE.md")


class WorkspaceError(Exception):
    """Base exception for workspace operations"""
    pass


class NotAGitRepositoryError(WorkspaceError):
    """Raised when the project directory is not inside a git repository"""
    pass


@dataclass
class Workspace:
    """An isolated copy of the project assigned to one feature"""
    feature_id: str
    path: Path
    branch: str
    created: bool = False  # False when an existing workspace was reused


class WorkspaceManager(ABC):
    """Contract consumed by the session and the supervisor."""

    @abstractmethod
    def create(self, feature_id: str) -> Workspace:
        """Create (or reuse) the isolated workspace for a feature."""

    @abstractmethod
    def remove(self, feature_id: str) -> bool:
        """Remove a feature's workspace. Returns False if there was none."""


class GitWorkspaceManager(WorkspaceManager):
    """Workspaces as git worktrees under <state>/worktrees/feature-<id>"""

    def __init__(self, layout: ProjectLayout, session_prefix: str = "featureloop"):
        self.layout = layout
        self.repo_root = layout.project_dir
        self.session_prefix = session_prefix

    def _run_git(self, args: List[str], cwd: Optional[Path] = None, check: bool = True) -> subprocess.CompletedProcess:
        """Run a git command.

        Args:
            args: Git command arguments (without 'git')
            cwd: Working directory (defaults to repo_root)
            check: Whether to raise WorkspaceError on non-zero exit

        Returns:
            CompletedProcess result
        """
        cwd = cwd or self.repo_root
        try:
            result = subprocess.run(
                ["git"] + args,
                cwd=cwd,
                capture_output=True,
                text=True,
            )
        except FileNotFoundError:
            raise WorkspaceError("git is not installed")

        if check and result.returncode != 0:
            raise WorkspaceError(f"git {' '.join(args)} failed: {result.stderr.strip()}")
        return result

    def _branch_exists(self, branch_name: str) -> bool:
        result = self._run_git(["show-ref", "--verify", "--quiet", f"refs/heads/{branch_name}"], check=False)
        return result.returncode == 0

    def _get_current_branch(self) -> str:
        result = self._run_git(["rev-parse", "--abbrev-ref", "HEAD"])
        return result.stdout.strip()

    def ensure_repository(self) -> None:
        result = self._run_git(["rev-parse", "--is-inside-work-tree"], check=False)
        if result.returncode != 0 or result.stdout.strip() != "true":
            raise NotAGitRepositoryError(f"{self.repo_root} is not a git repository")

    def base_branch(self) -> str:
        """
        The branch feature branches are cut from.

        Recorded once per session in BASE_BRANCH; the first call creates a
        session branch `<prefix>/<project>-<timestamp>` off the current HEAD.
        """
        base_file = self.layout.base_branch_file
        if base_file.exists():
            recorded = base_file.read_text().strip()
            if recorded:
                return recorded

        self.ensure_repository()
        stamp = datetime.now().strftime("%Y%m%d-%H%M%S")
        branch = f"{self.session_prefix}/{self.layout.project_name}-{stamp}"
        if not self._branch_exists(branch):
            self._run_git(["branch", branch, "HEAD"])

        base_file.parent.mkdir(parents=True, exist_ok=True)
        base_file.write_text(branch + "\n")
        logger.info(f"Created base branch: {branch}")
        return branch

    def _copy_shared_files(self, worktree_path: Path, feature_id: str) -> None:
        for name in SHARED_FILES:
            source = self.repo_root / name
            if source.is_file():
                shutil.copy2(source, worktree_path / name)

        state_dir = self.layout.workspace_state_dir(feature_id)
        state_dir.mkdir(parents=True, exist_ok=True)
        spec = self.layout.feature_spec(feature_id)
        if spec.is_file():
            shutil.copy2(spec, state_dir / FEATURE_SPEC_NAME)

    def create(self, feature_id: str) -> Workspace:
        """Create the worktree for a feature, or reuse the existing one.

        Raises:
            WorkspaceError: If git fails to create the branch or worktree
        """
        worktree_path = self.layout.workspace(feature_id)
        branch_name = self.layout.feature_branch(feature_id)

        if worktree_path.is_dir():
            StatusLedger(self.layout.ledger(feature_id)).initialize("Worktree initialized")
            logger.info(f"Worktree for {feature_id} already exists")
            return Workspace(feature_id=feature_id, path=worktree_path, branch=branch_name)

        base = self.base_branch()
        if not self._branch_exists(branch_name):
            self._run_git(["branch", branch_name, base])

        worktree_path.parent.mkdir(parents=True, exist_ok=True)
        self._run_git(["worktree", "add", str(worktree_path), branch_name])

        self._copy_shared_files(worktree_path, feature_id)
        StatusLedger(self.layout.ledger(feature_id)).initialize("Worktree initialized")

        logger.info(f"Created worktree: {worktree_path}")
        return Workspace(feature_id=feature_id, path=worktree_path, branch=branch_name, created=True)

    def remove(self, feature_id: str) -> bool:
        """Remove a feature's worktree and delete its branch."""
        worktree_path = self.layout.workspace(feature_id)
        if not worktree_path.exists():
            return False

        result = self._run_git(["worktree", "remove", str(worktree_path), "--force"], check=False)
        if result.returncode != 0 and worktree_path.exists():
            shutil.rmtree(worktree_path, ignore_errors=True)

        branch_name = self.layout.feature_branch(feature_id)
        if self._branch_exists(branch_name):
            self._run_git(["branch", "-D", branch_name], check=False)

        logger.info(f"Removed worktree for {feature_id}")
        return True
