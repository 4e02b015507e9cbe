"""
Base interface for agent hosts.

An agent host starts, feeds and observes one external agent process per
agent id. The mailbox router and the session talk to agents only through
this interface.
"""

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Dict, Optional

from .oneshot import OneShotRunner, ProgressCallback, RunResult

logger = logging.getLogger(__name__)


class AgentHostError(Exception):
    """Base error for agent host failures."""
    pass


class AgentLaunchError(AgentHostError):
    """The external agent process could not be started."""
    pass


@dataclass
class AgentHandle:
    """Address of a running (or previously started) agent."""
    agent_id: str
    target: str
    workdir: Optional[Path] = None
    started_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())


class AgentHost(ABC):
    """
    Interface for hosting external agents.

    Subclasses implement the transport (_send_once, start, is_alive);
    bounded retry for input delivery and one-shot runs are shared here.
    """

    def __init__(
        self,
        send_retries: int = 3,
        send_retry_delay: float = 0.5,
        runner: Optional[OneShotRunner] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.send_retries = max(1, send_retries)
        self.send_retry_delay = send_retry_delay
        self.runner = runner
        self._sleep = sleep

    @abstractmethod
    def start(
        self,
        agent_id: str,
        workdir: Path,
        env: Optional[Dict[str, str]] = None,
        initial_input: Optional[str] = None,
    ) -> AgentHandle:
        """
        Launch one external agent in `workdir`.

        Idempotent: an agent that is already alive is returned as is.

        Raises:
            AgentLaunchError: If the process could not be launched
        """

    @abstractmethod
    def resolve(self, agent_id: str) -> AgentHandle:
        """Handle for a named agent, whether or not it is alive."""

    @abstractmethod
    def is_alive(self, handle: AgentHandle) -> bool:
        """Existence-only liveness: the window/process is still there."""

    @abstractmethod
    def stop(self, handle: AgentHandle) -> None:
        """Best-effort termination of one agent."""

    def _send_once(self, handle: AgentHandle, text: str, submit: bool) -> bool:
        """
        Single delivery attempt. Returns False (or raises AgentHostError) on failure.

        Hosts that type and submit in separate steps override send_input instead.
        """
        raise NotImplementedError

    def _with_retries(self, handle: AgentHandle, attempt_once: Callable[[], bool]) -> bool:
        """Run one delivery step up to `send_retries` times."""
        for attempt in range(1, self.send_retries + 1):
            try:
                if attempt_once():
                    return True
            except AgentHostError as e:
                logger.debug(f"Send to {handle.agent_id} failed (attempt {attempt}): {e}")

            if attempt < self.send_retries:
                self._sleep(self.send_retry_delay)

        logger.warning(
            f"Dropping input for {handle.agent_id} after {self.send_retries} attempts"
        )
        return False

    def send_input(self, handle: AgentHandle, text: str, submit: bool = True) -> bool:
        """
        Deliver text to an agent as if typed, then submit it.

        Text is sent literally. Each attempt is bounded; after
        `send_retries` failed attempts the input is dropped with a warning.

        Returns:
            True if delivered, False if dropped
        """
        return self._with_retries(handle, lambda: self._send_once(handle, text, submit))

    def send_lines(self, handle: AgentHandle, text: str) -> bool:
        """
        Type multi-line text one line at a time, submitting each line.

        Stops at the first line that could not be delivered.
        """
        for line in text.split("\n"):
            if not self.send_input(handle, line, submit=True):
                return False
        return True

    def run_to_completion(
        self,
        prompt: str,
        on_progress: Optional[ProgressCallback] = None,
        workdir: Optional[Path] = None,
    ) -> RunResult:
        """Run a one-shot, non-interactive agent and wait for it to finish."""
        if self.runner is None:
            raise AgentHostError("No one-shot runner configured for this host")
        return self.runner.run(prompt, on_progress=on_progress, workdir=workdir)

    def cleanup(self) -> None:
        """Stop every agent this host knows about. Default: nothing to do."""
        pass
