"""
SubprocessAgentHost - Fallback when tmux is not available.

Agents run as child processes fed through stdin, with output captured to a
per-agent log file. No interactive attach capability (limitation of fallback).
"""

import logging
import os
import re
import signal
import subprocess
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Dict, Optional

from ..config import get_claude_binary
from .base import AgentHandle, AgentHost, AgentHostError, AgentLaunchError
from .oneshot import OneShotRunner
from .registry import AgentRecord, AgentRegistry

logger = logging.getLogger(__name__)


class SubprocessAgentHost(AgentHost):
    """
    Fallback host using plain subprocess spawning.

    Limitations:
    - No interactive attach
    - Processes are tracked in memory; a restarted supervisor cannot feed
      agents started by a previous one

    Use when tmux is not available (CI, containers).
    """

    def __init__(
        self,
        project_dir: Path,
        registry: AgentRegistry,
        log_dir: Path,
        claude_binary: Optional[str] = None,
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
        self.project_dir = Path(project_dir)
        self.registry = registry
        self.log_dir = Path(log_dir)
        self.claude_binary = claude_binary or get_claude_binary()

        self._processes: Dict[str, subprocess.Popen] = {}

    def _get_log_file(self, agent_id: str) -> Path:
        safe_id = re.sub(r'[^a-zA-Z0-9_-]', '-', agent_id)
        return self.log_dir / f"{safe_id}.log"

    def resolve(self, agent_id: str) -> AgentHandle:
        record = self.registry.get(agent_id)
        proc = self._processes.get(agent_id)
        return AgentHandle(
            agent_id=agent_id,
            target=f"pid-{proc.pid}" if proc else agent_id,
            workdir=Path(record.workdir) if record else None,
        )

    def is_alive(self, handle: AgentHandle) -> bool:
        proc = self._processes.get(handle.agent_id)
        return proc is not None and proc.poll() is None

    def start(
        self,
        agent_id: str,
        workdir: Path,
        env: Optional[Dict[str, str]] = None,
        initial_input: Optional[str] = None,
    ) -> AgentHandle:
        """
        Spawn an agent subprocess.

        Idempotent: returns the existing handle if the process is running.
        """
        if self.is_alive(self.resolve(agent_id)):
            logger.info(f"Process already running for agent {agent_id}")
            return self.resolve(agent_id)

        self.log_dir.mkdir(parents=True, exist_ok=True)
        log_file = self._get_log_file(agent_id)

        try:
            with open(log_file, "a") as log_handle:
                proc = subprocess.Popen(
                    [self.claude_binary, "--dangerously-skip-permissions"],
                    stdin=subprocess.PIPE,
                    stdout=log_handle,
                    stderr=subprocess.STDOUT,
                    cwd=str(workdir),
                    env={**os.environ, **(env or {})},
                    text=True,
                    start_new_session=True,  # Detach from parent
                )
        except OSError as e:
            raise AgentLaunchError(f"Failed to spawn {agent_id}: {e}")

        self._processes[agent_id] = proc

        now = datetime.now(timezone.utc).isoformat()
        handle = AgentHandle(agent_id=agent_id, target=f"pid-{proc.pid}", workdir=Path(workdir))
        self.registry.register(AgentRecord(
            agent_id=agent_id,
            target=handle.target,
            workdir=str(workdir),
            status="running",
            created_at=now,
            updated_at=now,
            pid=proc.pid,
        ))
        logger.info(f"Spawned subprocess for agent {agent_id} (PID: {proc.pid})")

        if initial_input and not self.send_lines(handle, initial_input):
            logger.warning(f"Agent {agent_id} started but did not receive its initial prompt")

        return handle

    def _send_once(self, handle: AgentHandle, text: str, submit: bool) -> bool:
        proc = self._processes.get(handle.agent_id)
        if proc is None or proc.poll() is not None or proc.stdin is None:
            return False

        try:
            proc.stdin.write(text + ("\n" if submit else ""))
            proc.stdin.flush()
        except (BrokenPipeError, ValueError, OSError) as e:
            raise AgentHostError(f"stdin closed for {handle.agent_id}: {e}")
        return True

    def stop(self, handle: AgentHandle) -> None:
        proc = self._processes.pop(handle.agent_id, None)
        if proc is not None and proc.poll() is None:
            try:
                os.kill(proc.pid, signal.SIGTERM)
                logger.info(f"Sent SIGTERM to PID {proc.pid}")
            except ProcessLookupError:
                pass  # Already dead
        self.registry.update_status(handle.agent_id, "terminated")

    def cleanup(self) -> None:
        for agent_id in list(self._processes):
            self.stop(AgentHandle(agent_id=agent_id, target=agent_id))
