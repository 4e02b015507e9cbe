"""
TmuxAgentHost - interactive agents in tmux windows.

One tmux session per project, one window per agent, named after the agent
id. Input is injected with `send-keys -l` so nothing the agents write to
each other is interpreted as a key binding.
"""

import logging
import re
import shlex
import shutil
import subprocess
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Dict, List, Optional

from ..config import get_claude_binary
from .base import AgentHandle, AgentHost, AgentHostError, AgentLaunchError
from .oneshot import OneShotRunner
from .registry import AgentRecord, AgentRegistry

logger = logging.getLogger(__name__)


@dataclass
class TmuxConfig:
    """Configuration for tmux-based agent management."""
    claude_binary: str = field(default_factory=get_claude_binary)
    session_prefix: str = "featureloop"
    command_timeout: int = 30
    boot_delay: float = 2.0  # let the agent CLI start before typing


class TmuxError(AgentHostError):
    """Base exception for tmux operations."""
    pass


class TmuxNotAvailableError(TmuxError):
    """tmux is not installed or not available."""
    pass


class TmuxAgentHost(AgentHost):
    """
    Direct tmux management for parallel agents.

    Features:
    - Agents survive supervisor crashes (they live in tmux)
    - Humans can attach to any agent window
    - Literal input injection, one line per submit
    """

    def __init__(
        self,
        project_dir: Path,
        registry: AgentRegistry,
        config: Optional[TmuxConfig] = None,
        session_name: Optional[str] = None,
        send_retries: int = 3,
        send_retry_delay: float = 0.5,
        runner: Optional[OneShotRunner] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        super().__init__(
            send_retries=send_retries,
            send_retry_delay=send_retry_delay,
            runner=runner,
            sleep=sleep,
        )
        self.config = config or TmuxConfig()
        self.project_dir = Path(project_dir)
        self.registry = registry
        self.session_name = session_name or self._default_session_name()

        if not self._is_tmux_available():
            raise TmuxNotAvailableError(
                "tmux is not installed. Install with: brew install tmux (macOS) "
                "or apt install tmux (Linux)"
            )

    def _is_tmux_available(self) -> bool:
        return shutil.which("tmux") is not None

    def _default_session_name(self) -> str:
        dir_name = self.project_dir.name[:30]
        safe_name = re.sub(r'[^a-zA-Z0-9_-]', '-', dir_name)
        return f"{self.config.session_prefix}-{safe_name}"

    @staticmethod
    def _window_name(agent_id: str) -> str:
        # tmux targets treat ':' and '.' specially
        return re.sub(r'[^a-zA-Z0-9_-]', '-', agent_id)[:50]

    def _run_tmux(self, args: List[str], check: bool = True) -> subprocess.CompletedProcess:
        """Run tmux command with a timeout so no call blocks indefinitely."""
        cmd = ["tmux"] + args
        logger.debug(f"Running: {' '.join(cmd)}")

        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=self.config.command_timeout,
                cwd=self.project_dir,
            )
        except subprocess.TimeoutExpired:
            raise TmuxError(f"tmux command timed out: {' '.join(args)}")

        if check and result.returncode != 0:
            logger.warning(f"tmux command failed: {' '.join(args)}, stderr: {result.stderr}")

        return result

    def _ensure_session(self) -> None:
        """Create the project's tmux session if it doesn't exist."""
        result = self._run_tmux(["has-session", "-t", self.session_name], check=False)

        if result.returncode != 0:
            created = self._run_tmux([
                "new-session",
                "-d",
                "-s", self.session_name,
                "-n", "monitor",
                "-c", str(self.project_dir),
            ])
            if created.returncode != 0:
                raise AgentLaunchError(
                    f"Could not create tmux session {self.session_name}: {created.stderr.strip()}"
                )
            logger.info(f"Created tmux session: {self.session_name}")

    def _agent_command(self, workdir: Path, env: Optional[Dict[str, str]]) -> str:
        exports = " ".join(f"{key}={shlex.quote(value)}" for key, value in (env or {}).items())
        binary = f"{self.config.claude_binary} --dangerously-skip-permissions"
        launch = f"{exports} {binary}" if exports else binary
        return f"cd {shlex.quote(str(workdir))} && {launch}"

    def resolve(self, agent_id: str) -> AgentHandle:
        record = self.registry.get(agent_id)
        return AgentHandle(
            agent_id=agent_id,
            target=f"{self.session_name}:{self._window_name(agent_id)}",
            workdir=Path(record.workdir) if record else None,
        )

    def list_windows(self) -> List[str]:
        """Names of the windows in the project's session."""
        result = self._run_tmux([
            "list-windows",
            "-t", self.session_name,
            "-F", "#{window_name}",
        ], check=False)

        if result.returncode != 0:
            return []
        return [line for line in result.stdout.strip().split("\n") if line]

    def is_alive(self, handle: AgentHandle) -> bool:
        try:
            return self._window_name(handle.agent_id) in self.list_windows()
        except TmuxError:
            return False

    def start(
        self,
        agent_id: str,
        workdir: Path,
        env: Optional[Dict[str, str]] = None,
        initial_input: Optional[str] = None,
    ) -> AgentHandle:
        """
        Spawn an agent in a new tmux window.

        Idempotent: returns the existing handle if the window exists.
        """
        handle = self.resolve(agent_id)
        if self.is_alive(handle):
            logger.info(f"Agent {agent_id} already running in {handle.target}")
            return handle

        self._ensure_session()
        window_name = self._window_name(agent_id)

        try:
            result = self._run_tmux([
                "new-window",
                "-t", self.session_name,
                "-n", window_name,
                "-c", str(workdir),
                self._agent_command(Path(workdir), env),
            ])
        except TmuxError as e:
            raise AgentLaunchError(f"Failed to launch {agent_id}: {e}")

        if result.returncode != 0:
            raise AgentLaunchError(f"Failed to launch {agent_id}: {result.stderr.strip()}")

        # Keep the window name stable; the agent CLI would otherwise retitle it
        self._run_tmux(["set-option", "-t", handle.target, "allow-rename", "off"], check=False)

        now = datetime.now(timezone.utc).isoformat()
        self.registry.register(AgentRecord(
            agent_id=agent_id,
            target=handle.target,
            workdir=str(workdir),
            status="running",
            created_at=now,
            updated_at=now,
        ))
        handle.workdir = Path(workdir)
        logger.info(f"Launched agent {agent_id} in {handle.target}")

        if initial_input:
            self._sleep(self.config.boot_delay)
            if not self.send_lines(handle, initial_input):
                logger.warning(f"Agent {agent_id} started but did not receive its initial prompt")

        return handle

    def _type_literal(self, handle: AgentHandle, text: str) -> bool:
        return self._run_tmux(["send-keys", "-t", handle.target, "-l", "--", text], check=False).returncode == 0

    def _press_enter(self, handle: AgentHandle) -> bool:
        return self._run_tmux(["send-keys", "-t", handle.target, "Enter"], check=False).returncode == 0

    def send_input(self, handle: AgentHandle, text: str, submit: bool = True) -> bool:
        """
        Type text literally, then press Enter.

        Typing and Enter are retried separately, so a failed Enter never
        types the text a second time.
        """
        if text and not self._with_retries(handle, lambda: self._type_literal(handle, text)):
            return False
        if submit and not self._with_retries(handle, lambda: self._press_enter(handle)):
            return False
        return True

    def stop(self, handle: AgentHandle) -> None:
        self._run_tmux(["kill-window", "-t", handle.target], check=False)
        self.registry.update_status(handle.agent_id, "terminated")
        logger.info(f"Stopped agent {handle.agent_id}")

    def cleanup(self) -> None:
        """Kill the entire session and all agents."""
        self._run_tmux(["kill-session", "-t", self.session_name], check=False)
        for record in self.registry.list_active():
            self.registry.update_status(record.agent_id, "terminated")
        logger.info(f"Cleaned up session {self.session_name}")
