"""
Optional pull request for a finished project.

When enabled, the base branch that collected every merged feature is
pushed to origin and a PR is opened against the target branch with the
GitHub CLI. Missing `gh`, missing auth or a missing remote skip the PR;
none of them stops the project from completing. The outcome is recorded
as PR_CREATED or PR_SKIPPED so the attempt is made only once.
"""

import logging
import shutil
import subprocess
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

from .layout import ProjectLayout
from .markers import MarkerSet
from .qa import QAReportError, load_qa_report
from .schema import Marker

logger = logging.getLogger(__name__)


class PullRequestError(Exception):
    """A git or gh command failed."""
    pass


@dataclass
class PullRequestResult:
    created: bool
    url: Optional[str] = None
    reason: str = ""


def qa_summary(layout: ProjectLayout) -> str:
    try:
        report = load_qa_report(layout.qa_report)
    except QAReportError:
        return "All standards validated"
    passed = sum(1 for check in report.results if check.passed)
    return f"QA Results: {passed}/{len(report.results)} standards passed"


def build_pr_body(layout: ProjectLayout, feature_ids: List[str]) -> str:
    """Markdown body: the features that went in and the last QA verdict."""
    features = "\n".join(f"- {feature_id}" for feature_id in feature_ids) or "- (none listed)"
    return (
        "## Summary\n"
        "Automated PR from a featureloop parallel development run.\n\n"
        "## Features Implemented\n"
        f"{features}\n\n"
        "## QA Validation\n"
        f"{qa_summary(layout)}\n"
    )


class PullRequestCreator:
    """Pushes the base branch and opens a PR for it, at most once per project."""

    def __init__(self, layout: ProjectLayout, target_branch: str = "main", timeout: int = 60):
        self.layout = layout
        self.repo_root = layout.project_dir
        self.target_branch = target_branch
        self.timeout = timeout
        self.markers = MarkerSet(layout)

    def _run(self, cmd: List[str], check: bool = True) -> subprocess.CompletedProcess:
        """Run a git or gh command in the project directory.

        Raises:
            PullRequestError: On timeout, missing binary, or non-zero exit when check is set
        """
        try:
            result = subprocess.run(
                cmd,
                cwd=self.repo_root,
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired:
            raise PullRequestError(f"{' '.join(cmd[:3])} timed out")
        except FileNotFoundError:
            raise PullRequestError(f"{cmd[0]} is not installed")

        if check and result.returncode != 0:
            raise PullRequestError(f"{' '.join(cmd[:3])} failed: {result.stderr.strip()}")
        return result

    def _skip(self, reason: str) -> PullRequestResult:
        logger.warning(f"Skipping pull request: {reason}")
        self.markers.touch(Marker.PR_SKIPPED)
        return PullRequestResult(created=False, reason=reason)

    def _missing_prerequisite(self) -> Optional[str]:
        if shutil.which("gh") is None:
            return "GitHub CLI (gh) not found"
        if self._run(["gh", "auth", "status"], check=False).returncode != 0:
            return "GitHub CLI not authenticated"
        if self._run(["git", "remote", "get-url", "origin"], check=False).returncode != 0:
            return "no git remote 'origin' configured"
        return None

    def create(self, feature_ids: List[str]) -> Optional[PullRequestResult]:
        """
        Push the base branch and open the PR.

        Returns:
            The outcome, or None if a PR was already attempted for this project
        """
        if self.markers.exists(Marker.PR_CREATED) or self.markers.exists(Marker.PR_SKIPPED):
            return None

        base_file = self.layout.base_branch_file
        branch = base_file.read_text().strip() if base_file.exists() else ""
        if not branch:
            return self._skip("no base branch recorded")

        try:
            missing = self._missing_prerequisite()
            if missing:
                return self._skip(missing)

            logger.info(f"Pushing base branch: {branch}")
            self._run(["git", "push", "-u", "origin", branch])

            logger.info(f"Creating PR: {branch} -> {self.target_branch}")
            result = self._run([
                "gh", "pr", "create",
                "--base", self.target_branch,
                "--head", branch,
                "--title", f"[featureloop] {self.layout.project_name} - QA Validated",
                "--body", build_pr_body(self.layout, feature_ids),
            ])
        except PullRequestError as e:
            return self._skip(str(e))

        url = result.stdout.strip()
        self.layout.state_dir.mkdir(parents=True, exist_ok=True)
        with open(self.pr_log, "a") as f:
            f.write(f"{datetime.now(timezone.utc).isoformat()} - PR created: {url}\n")
        self.markers.touch(Marker.PR_CREATED)
        logger.info(f"PR created: {url}")
        return PullRequestResult(created=True, url=url)

    @property
    def pr_log(self) -> Path:
        return self.layout.state_dir / "pr.log"
