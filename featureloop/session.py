"""
ProjectSession - one coordinated run of a project.

Discovers features, creates their workspaces, launches the integrator, the
QA agent and one worker per feature, then runs the mailbox router on a
background thread and the supervisor loop in the foreground.

Interrupts:
- first Ctrl+C stops the supervisor loop; agents keep running and the
  router keeps routing
- second Ctrl+C also stops the router

On completion the router stops and, unless configured otherwise, so do
the agents.
"""

import logging
import time
from pathlib import Path
from typing import Callable, Dict, List, Optional

from .config import LoopConfig
from .features import add_feature, discover_features
from .hosts.base import AgentHandle, AgentHost, AgentHostError
from .layout import FEATURE_SPEC_NAME, LEDGER_NAME, ProjectLayout
from .mailbox import Mailbox, MailboxRouter, RouterCursor
from .prompts import (
    INTEGRATOR_PROMPT,
    NEW_FEATURE_MESSAGE,
    NEW_FEATURE_TOKEN,
    PROMPT_FILE_INSTRUCTION,
    QA_PROMPT,
    WORKER_PROMPT,
)
from .schema import Marker
from .supervisor import SupervisorLoop, TickOutcome
from .ticker import RealTicker, Ticker
from .workspace import WorkspaceError, WorkspaceManager

logger = logging.getLogger(__name__)


class ProjectSession:
    """Wires hosts, mailbox, router and supervisor together for one project."""

    def __init__(
        self,
        layout: ProjectLayout,
        config: LoopConfig,
        host: AgentHost,
        workspaces: WorkspaceManager,
        router_ticker: Optional[Ticker] = None,
        supervisor_ticker: Optional[Ticker] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.layout = layout
        self.config = config
        self.host = host
        self.workspaces = workspaces
        self._sleep = sleep

        self.mailbox = Mailbox(layout.mailbox)
        self.router = MailboxRouter(
            self.mailbox,
            host,
            cursor=RouterCursor(layout.cursor_file),
            ticker=router_ticker or RealTicker(),
            interval=config.router_interval,
            sleep=sleep,
        )
        self.supervisor = SupervisorLoop(
            layout,
            self.mailbox,
            config=config,
            ticker=supervisor_ticker or RealTicker(),
            workspaces=workspaces,
            on_complete=self.router.stop,
        )

    # ------------------------------------------------------------------
    # Prompts
    # ------------------------------------------------------------------

    def _rel(self, path: Path) -> str:
        return str(path.relative_to(self.layout.project_dir))

    def _base_branch(self) -> str:
        base_file = self.layout.base_branch_file
        return base_file.read_text().strip() if base_file.exists() else "the base branch"

    def integrator_prompt(self) -> str:
        state = self.layout.state_dir_name
        return INTEGRATOR_PROMPT.render({
            "project_name": self.layout.project_name,
            "agent_id": self.config.integrator_agent,
            "ledger_glob": f"{self._rel(self.layout.worktrees_dir)}/feature-*/{state}/{LEDGER_NAME}",
            "mailbox": self.layout.mailbox,
            "base_branch": self._base_branch(),
            "all_merged": self._rel(self.layout.marker(Marker.ALL_MERGED)),
            "qa_complete": self._rel(self.layout.marker(Marker.QA_COMPLETE)),
            "project_complete": self._rel(self.layout.marker(Marker.PROJECT_COMPLETE)),
        })

    def qa_prompt(self) -> str:
        return QA_PROMPT.render({
            "project_name": self.layout.project_name,
            "standards": self._rel(self.layout.standards),
            "qa_report": self._rel(self.layout.qa_report),
            "qa_complete": self._rel(self.layout.marker(Marker.QA_COMPLETE)),
            "qa_needs_fixes": self._rel(self.layout.marker(Marker.QA_NEEDS_FIXES)),
        })

    def worker_prompt(self, feature_id: str) -> str:
        state = self.layout.state_dir_name
        return WORKER_PROMPT.render({
            "feature_id": feature_id,
            "branch": self.layout.feature_branch(feature_id),
            "feature_spec": f"{state}/{FEATURE_SPEC_NAME}",
            "techstack": self.layout.techstack,
            "ledger": f"{state}/{LEDGER_NAME}",
            "mailbox": self.layout.mailbox,
        })

    def _worker_env(self, feature_id: str) -> Dict[str, str]:
        return {"MAIN_REPO": str(self.layout.project_dir), "FEATURE": feature_id}

    # ------------------------------------------------------------------
    # Setup and launch
    # ------------------------------------------------------------------

    def prepare(self) -> List[str]:
        """
        Discover features and create their workspaces.

        A feature whose workspace cannot be created is logged and left out;
        the rest of the session goes ahead without it.

        Returns:
            Ids of the features that have a workspace

        Raises:
            NoFeaturesError: Before anything is created or launched
        """
        feature_ids = discover_features(self.layout)
        logger.info(f"Found {len(feature_ids)} features: {', '.join(feature_ids)}")

        self.mailbox.ensure()
        self.layout.qa_reports_dir.mkdir(parents=True, exist_ok=True)
        ready = []
        for feature_id in feature_ids:
            try:
                self.workspaces.create(feature_id)
            except WorkspaceError as e:
                logger.error(f"Skipping {feature_id}: could not create its workspace: {e}")
                continue
            ready.append(feature_id)
        return ready

    def _launch(
        self,
        agent_id: str,
        workdir: Path,
        prompt: str,
        env: Optional[Dict[str, str]] = None,
    ) -> AgentHandle:
        # Agents read their prompt from a file; only one line is typed
        prompt_file = self.layout.prompt_file(agent_id)
        prompt_file.parent.mkdir(parents=True, exist_ok=True)
        prompt_file.write_text(prompt)
        return self.host.start(
            agent_id,
            workdir,
            env=env,
            initial_input=PROMPT_FILE_INSTRUCTION.render({"prompt_file": prompt_file}),
        )

    def launch_integrator(self) -> AgentHandle:
        return self._launch(self.config.integrator_agent, self.layout.project_dir, self.integrator_prompt())

    def launch_qa(self) -> AgentHandle:
        return self._launch(self.config.qa_agent, self.layout.project_dir, self.qa_prompt())

    def launch_worker(self, feature_id: str) -> AgentHandle:
        return self._launch(
            feature_id,
            self.layout.workspace(feature_id),
            self.worker_prompt(feature_id),
            env=self._worker_env(feature_id),
        )

    def launch_all(self, feature_ids: List[str]) -> List[AgentHandle]:
        """
        Integrator, QA, then one worker per feature, staggered.

        An agent that fails to launch is logged and skipped; the project
        simply cannot complete until it is running.
        """
        logger.info("Launching agents...")
        launches = [
            (self.config.integrator_agent, self.launch_integrator),
            (self.config.qa_agent, self.launch_qa),
        ]
        launches.extend(
            (feature_id, lambda feature_id=feature_id: self.launch_worker(feature_id))
            for feature_id in feature_ids
        )

        handles = []
        for agent_id, launch in launches:
            try:
                handles.append(launch())
            except AgentHostError as e:
                logger.error(f"Failed to launch agent {agent_id}: {e}")
            if agent_id in feature_ids:
                self._sleep(self.config.launch_stagger)  # avoid rate limits

        failed = len(launches) - len(handles)
        if failed:
            logger.warning(f"Launched {len(handles)} agents, {failed} failed")
        else:
            logger.info(f"All agents launched ({len(handles)})")
        return handles

    def is_running(self) -> bool:
        """Whether a session for this project already has its integrator up."""
        return self.host.is_alive(self.host.resolve(self.config.integrator_agent))

    def add_feature(self, feature_id: str, description: str) -> bool:
        """
        Register a new feature; join it to a running session if there is one.

        Returns:
            True if a worker was launched, False if the feature waits for the next run
        """
        spec_path = add_feature(self.layout, feature_id, description)
        if not self.is_running():
            return False

        self.workspaces.create(feature_id)
        self.launch_worker(feature_id)
        self.mailbox.post(
            "monitor",
            self.config.integrator_agent,
            NEW_FEATURE_MESSAGE.render({
                "token": NEW_FEATURE_TOKEN,
                "feature_id": feature_id,
                "feature_spec": self._rel(spec_path),
            }),
        )
        logger.info(f"Worker launched for {feature_id}")
        return True

    # ------------------------------------------------------------------
    # Running
    # ------------------------------------------------------------------

    def supervise(self) -> Optional[TickOutcome]:
        """
        Run the supervisor loop in the foreground.

        Returns the final outcome, or None if the loop was interrupted.
        """
        try:
            outcome = self.supervisor.run()
        except KeyboardInterrupt:
            logger.warning(
                "Supervisor stopped. Agents keep running and the mailbox router keeps routing. "
                "Press Ctrl+C again to stop the router."
            )
        else:
            self.router.stop()
            if outcome.done and self.config.stop_agents_on_complete:
                logger.info("Project complete; stopping agents")
                self.host.cleanup()
            return outcome

        try:
            self.router.wait()
        except KeyboardInterrupt:
            logger.warning("Stopping mailbox router...")
            self.router.stop()
        return None

    def run(self, launch: bool = True) -> Optional[TickOutcome]:
        """Prepare, launch, route and supervise until complete or interrupted."""
        feature_ids = self.prepare()
        if launch:
            self.launch_all(feature_ids)
        self.router.start()
        return self.supervise()
