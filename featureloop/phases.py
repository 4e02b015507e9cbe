"""
Enrichment pipeline: research -> spec enrichment -> standards.

Each phase is one run-to-completion agent call. A phase that fails, times
out or leaves its artifact missing is not an error: a fallback artifact is
synthesized and the pipeline continues. Re-running the pipeline on an
enriched project never loses content: anything an agent run deletes or
blanks is restored from a snapshot taken just before the run.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Mapping, Optional

from .config import LoopConfig, detect_project_type, get_project_commands
from .features import feature_ids_from_specs, parse_feature_list, write_feature_list
from .hosts.base import AgentHost, AgentHostError
from .hosts.oneshot import RunnerError, RunResult
from .layout import ProjectLayout
from .markers import MarkerSet
from .prompts import (
    RESEARCH_PLACEHOLDER,
    RESEARCH_PROMPT,
    SPEC_PROMPT,
    STANDARDS_FALLBACK,
    STANDARDS_PROMPT,
    PromptTemplate,
)
from .schema import Marker

logger = logging.getLogger(__name__)

PhaseProgress = Callable[[str, str], None]


@dataclass
class Phase:
    """One pipeline stage: a prompt template and the artifact it must produce."""
    name: str
    template: PromptTemplate
    artifact: Path
    completion_token: str

    def build_prompt(self, values: Mapping[str, object]) -> str:
        """Render the prompt. Pure: no agent is invoked."""
        return self.template.render({**values, "token": self.completion_token})


@dataclass
class PhaseOutcome:
    """What happened in one phase run."""
    name: str
    result: Optional[RunResult]
    fallback_used: bool = False
    restored: int = 0

    @property
    def succeeded(self) -> bool:
        return self.result is not None and self.result.success


def _has_content(path: Path) -> bool:
    try:
        return bool(path.read_text(errors="replace").strip())
    except (FileNotFoundError, IsADirectoryError):
        return False


class PhasePipeline:
    """Runs the three enrichment phases against one project."""

    def __init__(
        self,
        layout: ProjectLayout,
        host: AgentHost,
        config: Optional[LoopConfig] = None,
        on_progress: Optional[PhaseProgress] = None,
    ):
        self.layout = layout
        self.host = host
        self.config = config or LoopConfig()
        self.on_progress = on_progress
        self.markers = MarkerSet(layout)

        self.research = Phase("research", RESEARCH_PROMPT, layout.research_findings, "RESEARCH_COMPLETE")
        self.spec = Phase("spec", SPEC_PROMPT, layout.features_file, "SPECS_ENRICHED")
        self.standards = Phase("standards", STANDARDS_PROMPT, layout.standards, "STANDARDS_COMPLETE")

    @property
    def phases(self) -> List[Phase]:
        return [self.research, self.spec, self.standards]

    def _rel(self, path: Path) -> str:
        try:
            return str(path.relative_to(self.layout.project_dir))
        except ValueError:
            return str(path)

    def _paths(self) -> Dict[str, str]:
        layout = self.layout
        return {
            "research_findings": self._rel(layout.research_findings),
            "project_spec": self._rel(layout.project_spec),
            "techstack": self._rel(layout.techstack),
            "standards": self._rel(layout.standards),
            "features_file": self._rel(layout.features_file),
            "feature_specs_dir": self._rel(layout.feature_specs_dir),
        }

    # ------------------------------------------------------------------
    # Snapshot / restore
    # ------------------------------------------------------------------

    def _protected(self) -> List[Path]:
        layout = self.layout
        paths = [
            layout.research_findings,
            layout.features_file,
            layout.project_spec,
            layout.techstack,
            layout.standards,
        ]
        if layout.feature_specs_dir.is_dir():
            paths.extend(sorted(layout.feature_specs_dir.glob("*.spec.md")))
        return paths

    def snapshot(self) -> Dict[Path, str]:
        """Contents of every non-blank enriched artifact."""
        return {
            path: path.read_text(errors="replace")
            for path in self._protected()
            if _has_content(path)
        }

    def restore(self, snapshot: Dict[Path, str]) -> int:
        """Put back any snapshotted artifact that was deleted or blanked."""
        restored = 0
        for path, content in snapshot.items():
            if not _has_content(path):
                path.parent.mkdir(parents=True, exist_ok=True)
                path.write_text(content)
                logger.warning(f"Restored {self._rel(path)} after it was removed or emptied")
                restored += 1
        return restored

    # ------------------------------------------------------------------
    # Running
    # ------------------------------------------------------------------

    def _progress_for(self, phase: Phase) -> Optional[Callable[[str], None]]:
        if self.on_progress is None:
            return None
        return lambda description: self.on_progress(phase.name, description)

    def _run(self, phase: Phase, prompt: str) -> PhaseOutcome:
        snapshot = self.snapshot()
        was_ready = self.markers.exists(Marker.SPECS_READY)
        logger.info(f"Running {phase.name} phase...")

        result = None
        try:
            result = self.host.run_to_completion(
                prompt,
                on_progress=self._progress_for(phase),
                workdir=self.layout.project_dir,
            )
        except (AgentHostError, RunnerError) as e:
            logger.warning(f"{phase.name} phase could not run: {e}")
        finally:
            restored = self.restore(snapshot)
            if was_ready and not self.markers.exists(Marker.SPECS_READY):
                self.markers.touch(Marker.SPECS_READY)

        if result is not None and not result.success:
            logger.warning(f"{phase.name} phase failed: {result.error_message}")
        elif result is not None and not result.saw_token(phase.completion_token):
            logger.debug(f"{phase.name} phase exited without printing {phase.completion_token}")

        return PhaseOutcome(name=phase.name, result=result, restored=restored)

    def run_research(self, context: str) -> PhaseOutcome:
        phase = self.research
        prompt = phase.build_prompt({
            **self._paths(),
            "context": context.strip() or "(no description provided)",
        })
        outcome = self._run(phase, prompt)

        if not _has_content(self.layout.research_findings):
            logger.warning("Research phase did not produce findings; creating placeholder.")
            self.layout.research_findings.parent.mkdir(parents=True, exist_ok=True)
            self.layout.research_findings.write_text(RESEARCH_PLACEHOLDER.render({}))
            outcome.fallback_used = True

        logger.info("Research phase complete.")
        return outcome

    def _existing_specs(self) -> str:
        names = [f"- {path.name}" for path in sorted(self.layout.feature_specs_dir.glob("*.spec.md"))]
        return "\n".join(names) if names else "(none yet)"

    def run_spec(self, context: str = "") -> PhaseOutcome:
        phase = self.spec
        self.layout.feature_specs_dir.mkdir(parents=True, exist_ok=True)
        context_section = f"## Project Description\n{context.strip()}" if context.strip() else ""
        prompt = phase.build_prompt({
            **self._paths(),
            "context_section": context_section,
            "existing_specs": self._existing_specs(),
        })
        outcome = self._run(phase, prompt)

        features_file = self.layout.features_file
        listed = parse_feature_list(features_file.read_text(errors="replace")) if features_file.exists() else []
        if not listed:
            ids = feature_ids_from_specs(self.layout)
            if ids:
                write_feature_list(features_file, ids)
                logger.warning(f"Feature list not produced; reconstructed from specs: {', '.join(ids)}")
                outcome.fallback_used = True

        logger.info("Spec enrichment phase complete.")
        return outcome

    def detected_stack(self) -> str:
        project_type = detect_project_type(self.layout.project_dir)
        if project_type is None:
            return "Unable to detect automatically. Standards below are generic."
        return f"{project_type} (detected from project configuration files)"

    def run_standards(self) -> PhaseOutcome:
        phase = self.standards
        test_command = (
            get_project_commands(self.layout.project_dir)["test_command"]
            or "Run the project's configured test command"
        )
        values = {
            **self._paths(),
            "detected_stack": self.detected_stack(),
            "test_command": test_command,
        }
        outcome = self._run(phase, phase.build_prompt(values))

        if not _has_content(self.layout.standards):
            logger.warning("Standards generation did not produce output; creating generic fallback.")
            self.layout.standards.parent.mkdir(parents=True, exist_ok=True)
            self.layout.standards.write_text(STANDARDS_FALLBACK.render(values))
            outcome.fallback_used = True

        logger.info("Standards generation phase complete.")
        return outcome

    def run_all(self, context: str) -> List[PhaseOutcome]:
        """Research, spec and standards in order, then mark the specs ready."""
        logger.info("Running all phases: research -> spec -> standards")
        outcomes = [
            self.run_research(context),
            self.run_spec(context),
            self.run_standards(),
        ]
        self.markers.touch(Marker.SPECS_READY)
        logger.info("All phases complete. SPECS_READY marker created.")
        return outcomes
