"""
On-disk layout of a featureloop project.

Every file the core reads or writes is named here so agents' prompts,
the supervisor and the dashboard agree on locations.
"""

from dataclasses import dataclass
from pathlib import Path

from .schema import Marker

LEDGER_NAME = "status.log"
FEATURE_SPEC_NAME = "FEATURE_SPEC.md"


@dataclass(frozen=True)
class ProjectLayout:
    """Paths for one project rooted at `project_dir`."""
    project_dir: Path
    state_dir_name: str = ".featureloop"

    @classmethod
    def for_project(cls, project_dir: Path, state_dir_name: str = ".featureloop") -> "ProjectLayout":
        return cls(project_dir=Path(project_dir).resolve(), state_dir_name=state_dir_name)

    @property
    def project_name(self) -> str:
        return self.project_dir.name

    @property
    def state_dir(self) -> Path:
        return self.project_dir / self.state_dir_name

    # Message bus
    @property
    def mailbox(self) -> Path:
        return self.state_dir / "mailbox"

    @property
    def cursor_file(self) -> Path:
        return self.state_dir / "mailbox.cursor"

    @property
    def agents_file(self) -> Path:
        return self.state_dir / "agents.json"

    @property
    def logs_dir(self) -> Path:
        return self.state_dir / "logs"

    @property
    def prompts_dir(self) -> Path:
        return self.state_dir / "prompts"

    def prompt_file(self, agent_id: str) -> Path:
        return self.prompts_dir / f"{agent_id}.md"

    @property
    def base_branch_file(self) -> Path:
        return self.state_dir / "BASE_BRANCH"

    # Phase artifacts
    @property
    def research_findings(self) -> Path:
        return self.state_dir / "research-findings.md"

    @property
    def specs_dir(self) -> Path:
        return self.state_dir / "specs"

    @property
    def feature_specs_dir(self) -> Path:
        return self.specs_dir / "features"

    @property
    def features_file(self) -> Path:
        return self.specs_dir / ".features"

    @property
    def project_spec(self) -> Path:
        return self.specs_dir / "PROJECT_SPEC.md"

    @property
    def techstack(self) -> Path:
        return self.specs_dir / "TECHSTACK.md"

    @property
    def standards(self) -> Path:
        return self.specs_dir / "STANDARDS.md"

    # QA
    @property
    def qa_reports_dir(self) -> Path:
        return self.state_dir / "qa-reports"

    @property
    def qa_report(self) -> Path:
        return self.qa_reports_dir / "latest.json"

    # Workspaces
    @property
    def worktrees_dir(self) -> Path:
        return self.state_dir / "worktrees"

    def marker(self, marker: Marker) -> Path:
        return self.state_dir / marker.value

    def feature_spec(self, feature_id: str) -> Path:
        return self.feature_specs_dir / f"{feature_id}.spec.md"

    def workspace(self, feature_id: str) -> Path:
        return self.worktrees_dir / f"feature-{feature_id}"

    def workspace_state_dir(self, feature_id: str) -> Path:
        return self.workspace(feature_id) / self.state_dir_name

    def ledger(self, feature_id: str) -> Path:
        return self.workspace_state_dir(feature_id) / LEDGER_NAME

    def feature_branch(self, feature_id: str) -> str:
        return f"feature/{feature_id}"

    def archive_dir(self, stamp: str) -> Path:
        return self.project_dir / f"{self.state_dir_name}-complete-{stamp}"
