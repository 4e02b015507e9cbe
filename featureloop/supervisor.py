"""
Supervisor loop: the project state machine.

Each tick reads marker files and ledgers, then reacts by posting mailbox
messages or archiving the project:

    PROJECT_COMPLETE              -> optional pull request, archive, stop the router, exit
    QA_NEEDS_FIXES                -> one FIX_TASK per failing feature, checks no
                                     feature owns go to the integrator, clear markers
    ALL_MERGED (no QA verdict)    -> RUN_QA to the QA agent, once per merge cycle
    every feature COMPLETE        -> MERGE_READY to the integrator, once

A missing marker always means "not yet", never an error.
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, FrozenSet, List, Optional

from .archive import ArchiveResult, archive_project
from .config import LoopConfig
from .features import collect_features, read_feature_list
from .layout import ProjectLayout
from .ledger import StatusLedger
from .mailbox import Mailbox
from .markers import MarkerSet
from .prompts import (
    FIX_TASK_TOKEN,
    MERGE_READY_MESSAGE,
    MERGE_READY_TOKEN,
    QA_UNATTRIBUTED_TOKEN,
    RUN_QA_TOKEN,
)
from .pull_request import PullRequestCreator, PullRequestResult
from .qa import QAReportError, build_fix_task_body, build_unattributed_body, load_qa_report
from .schema import FeatureStatus, Marker, Message, ProjectState
from .ticker import RealTicker, Ticker
from .workspace import WorkspaceManager

logger = logging.getLogger(__name__)


@dataclass
class TickOutcome:
    """Result of one supervisor tick."""
    state: ProjectState
    posted: List[Message] = field(default_factory=list)
    done: bool = False
    archive: Optional[ArchiveResult] = None
    pull_request: Optional[PullRequestResult] = None


class SupervisorLoop:
    """
    Polls project state and drives merge -> QA -> fix -> complete.

    Holds no state that matters across restarts beyond "already asked":
    a restarted loop may repeat a RUN_QA or MERGE_READY request, which the
    receiving agents treat as idempotent.
    """

    def __init__(
        self,
        layout: ProjectLayout,
        mailbox: Mailbox,
        config: Optional[LoopConfig] = None,
        ticker: Optional[Ticker] = None,
        workspaces: Optional[WorkspaceManager] = None,
        on_complete: Optional[Callable[[], None]] = None,
        sender: str = "monitor",
    ):
        self.layout = layout
        self.mailbox = mailbox
        self.config = config or LoopConfig()
        self.ticker = ticker or RealTicker()
        self.workspaces = workspaces
        self.on_complete = on_complete
        self.sender = sender
        self.markers = MarkerSet(layout)

        self._qa_requested = False
        self._merge_requested_for: Optional[FrozenSet[str]] = None
        # feature -> COMPLETE events in its ledger when a fix task was sent
        self._awaiting_fix: Dict[str, int] = {}
        self._last_state: Optional[ProjectState] = None

    def _post(self, kind: str, recipient: str, body: str) -> Message:
        message = self.mailbox.post(self.sender, recipient, body)
        logger.info(f"Sent {kind} to {recipient}")
        return message

    def _base_branch(self) -> str:
        base_file = self.layout.base_branch_file
        base_branch = base_file.read_text().strip() if base_file.exists() else ""
        return base_branch or "the base branch"

    def _complete_events(self, feature_id: str) -> int:
        return sum(
            1 for event in StatusLedger(self.layout.ledger(feature_id)).events()
            if event.status == FeatureStatus.COMPLETE
        )

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _archive(self) -> TickOutcome:
        feature_ids = [feature.id for feature in collect_features(self.layout)]
        pull_request = None
        if self.config.auto_pr:
            creator = PullRequestCreator(self.layout, target_branch=self.config.pr_target_branch)
            pull_request = creator.create(feature_ids)

        workspaces = self.workspaces if self.config.remove_workspaces_on_complete else None
        result = archive_project(self.layout, feature_ids, workspaces=workspaces)
        logger.info(f"Project complete. State archived to {result.archive_dir}")

        if self.on_complete is not None:
            self.on_complete()
        return TickOutcome(
            state=ProjectState.COMPLETE, done=True, archive=result, pull_request=pull_request,
        )

    def _dispatch_fixes(self) -> List[Message]:
        try:
            report = load_qa_report(self.layout.qa_report)
        except QAReportError as e:
            logger.warning(f"{e}; leaving {Marker.QA_NEEDS_FIXES.value} for the next tick")
            return []

        posted = []
        for feature_id, checks in report.failing_by_feature().items():
            self._awaiting_fix[feature_id] = self._complete_events(feature_id)
            posted.append(self._post(FIX_TASK_TOKEN, feature_id, build_fix_task_body(feature_id, checks)))
        fixes_sent = bool(posted)

        unattributed = report.unattributed_failures()
        if unattributed:
            for check in unattributed:
                logger.warning(f"QA check {check.id} failed with no associated feature: {check.details}")
            posted.append(self._post(
                QA_UNATTRIBUTED_TOKEN,
                self.config.integrator_agent,
                build_unattributed_body(unattributed, self._base_branch(), self.layout.marker(Marker.ALL_MERGED)),
            ))

        self.markers.clear(Marker.QA_NEEDS_FIXES)
        self._qa_requested = False
        if not posted:
            # Nothing to fix; ALL_MERGED stays so QA is asked to run again
            logger.warning("QA reported fixes needed but the report lists no failing checks")
            return posted

        # The next QA run waits for a new ALL_MERGED
        self.markers.clear(Marker.ALL_MERGED)
        if fixes_sent:
            # Fixed features must be merged again
            self._merge_requested_for = None
        return posted

    def _request_qa(self) -> List[Message]:
        if self._qa_requested:
            return []
        self._qa_requested = True
        return [self._post(RUN_QA_TOKEN, self.config.qa_agent, RUN_QA_TOKEN)]

    def _ready_for_merge(self, feature_ids: List[str]) -> bool:
        for feature_id in feature_ids:
            ledger = StatusLedger(self.layout.ledger(feature_id))
            if ledger.current_status() != FeatureStatus.COMPLETE:
                return False
            if feature_id in self._awaiting_fix and self._complete_events(feature_id) <= self._awaiting_fix[feature_id]:
                return False
        return True

    def _request_merge(self) -> List[Message]:
        if not self.config.request_merge:
            return []

        feature_ids = read_feature_list(self.layout)
        if not feature_ids or frozenset(feature_ids) == self._merge_requested_for:
            return []
        if not self._ready_for_merge(feature_ids):
            return []

        body = MERGE_READY_MESSAGE.render({
            "token": MERGE_READY_TOKEN,
            "features": ", ".join(feature_ids),
            "base_branch": self._base_branch(),
            "all_merged": self.layout.marker(Marker.ALL_MERGED),
        })

        self._merge_requested_for = frozenset(feature_ids)
        self._awaiting_fix.clear()
        return [self._post(MERGE_READY_TOKEN, self.config.integrator_agent, body)]

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------

    def tick(self) -> TickOutcome:
        state = self.markers.project_state()
        if state != self._last_state:
            logger.info(f"Project state: {state.value}")
            self._last_state = state

        if state == ProjectState.COMPLETE:
            return self._archive()

        if self.markers.exists(Marker.QA_NEEDS_FIXES):
            return TickOutcome(state=state, posted=self._dispatch_fixes())

        if state == ProjectState.ALL_MERGED:
            return TickOutcome(state=state, posted=self._request_qa())

        if state == ProjectState.BUILDING:
            self._qa_requested = False
            return TickOutcome(state=state, posted=self._request_merge())

        return TickOutcome(state=state)

    def run(self) -> TickOutcome:
        """Tick until the project completes or the ticker is stopped."""
        logger.info("Supervisor loop started")
        while True:
            outcome = self.tick()
            if outcome.done:
                return outcome
            if not self.ticker.wait(self.config.supervisor_interval):
                logger.info("Supervisor loop stopped")
                return outcome

    def stop(self) -> None:
        self.ticker.stop()
