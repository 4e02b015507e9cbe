"""
Host selection: tmux is preferred, with subprocess as fallback.
"""

import logging
import shutil
from pathlib import Path
from typing import Optional

from ..config import LoopConfig
from ..layout import ProjectLayout
from .base import AgentHost
from .oneshot import OneShotRunner
from .registry import AgentRegistry
from .subprocess_host import SubprocessAgentHost
from .tmux_host import TmuxAgentHost, TmuxConfig

logger = logging.getLogger(__name__)


def select_host(
    layout: ProjectLayout,
    config: LoopConfig,
    tmux_available: Optional[bool] = None,
) -> AgentHost:
    """
    Build the agent host for a project.

    Interactive agents live in tmux when it is installed so humans can
    attach to them; otherwise they run as plain subprocesses.
    """
    if tmux_available is None:
        tmux_available = shutil.which("tmux") is not None

    registry = AgentRegistry(layout.agents_file)
    runner = OneShotRunner(
        working_dir=layout.project_dir,
        timeout=config.phase_timeout,
        claude_binary=config.claude_binary,
    )

    if tmux_available:
        return TmuxAgentHost(
            project_dir=layout.project_dir,
            registry=registry,
            config=TmuxConfig(
                claude_binary=config.claude_binary,
                session_prefix=config.session_prefix,
                command_timeout=config.command_timeout,
                boot_delay=config.agent_boot_delay,
            ),
            send_retries=config.send_retries,
            send_retry_delay=config.send_retry_delay,
            runner=runner,
        )

    logger.info("tmux not available, using subprocess fallback")
    return SubprocessAgentHost(
        project_dir=layout.project_dir,
        registry=registry,
        log_dir=layout.logs_dir,
        claude_binary=config.claude_binary,
        send_retries=config.send_retries,
        send_retry_delay=config.send_retry_delay,
        runner=runner,
    )
