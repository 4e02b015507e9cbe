"""
Agent hosting backends.

Interactive agents run in tmux windows (or plain subprocesses as a
fallback); one-shot agents run to completion through OneShotRunner.
"""

from .base import AgentHandle, AgentHost, AgentHostError, AgentLaunchError
from .oneshot import OneShotRunner, RunnerError, RunResult, describe_stream_event
from .registry import AgentRecord, AgentRegistry
from .selector import select_host
from .subprocess_host import SubprocessAgentHost
from .tmux_host import TmuxAgentHost, TmuxConfig, TmuxError, TmuxNotAvailableError

__all__ = [
    "AgentHandle",
    "AgentHost",
    "AgentHostError",
    "AgentLaunchError",
    "AgentRecord",
    "AgentRegistry",
    "OneShotRunner",
    "RunResult",
    "RunnerError",
    "SubprocessAgentHost",
    "TmuxAgentHost",
    "TmuxConfig",
    "TmuxError",
    "TmuxNotAvailableError",
    "describe_stream_event",
    "select_host",
]
