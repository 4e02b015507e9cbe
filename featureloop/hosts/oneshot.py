"""
One-shot agent runner.

Runs the agent CLI non-interactively (`-p`) with a stream-json event feed,
reporting the most recent human-readable action to a progress callback
until the process exits or the coarse timeout elapses.
"""

import json
import logging
import os
import subprocess
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, List, Optional

from ..config import get_claude_binary

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str], None]

STATUS_WIDTH = 72
MIN_TEXT_LENGTH = 10

FILE_TOOLS = ("Read", "Edit", "Write", "Glob", "Grep", "NotebookEdit")
WEB_TOOLS = ("WebSearch", "WebFetch")


class RunnerError(Exception):
    """The one-shot agent could not be launched at all."""
    pass


@dataclass
class RunResult:
    """Outcome of one run-to-completion."""
    success: bool
    exit_code: Optional[int] = None
    timed_out: bool = False
    output: str = ""
    error_message: Optional[str] = None
    duration: float = 0.0

    def saw_token(self, token: str) -> bool:
        """Whether the agent printed its completion token."""
        return bool(token) and token in self.output


def _truncate(text: str, width: int = STATUS_WIDTH) -> str:
    return text if len(text) <= width else text[:width]


def _tool_target(name: str, tool_input: dict) -> str:
    if name == "Bash":
        target = tool_input.get("description") or str(tool_input.get("command", ""))[:50]
    elif name in FILE_TOOLS:
        target = tool_input.get("file_path") or tool_input.get("notebook_path") or tool_input.get("pattern", "")
    elif name in WEB_TOOLS:
        target = tool_input.get("query") or tool_input.get("url", "")
    else:
        target = tool_input.get("description", "")
    return str(target).strip()


def parse_stream_line(line: str) -> Optional[dict]:
    """Decode one stream-json line; anything that isn't a JSON object is ignored."""
    line = line.strip()
    if not line:
        return None
    try:
        event = json.loads(line)
    except json.JSONDecodeError:
        return None
    return event if isinstance(event, dict) else None


def _content_blocks(event: dict) -> List[Any]:
    message = event.get("message")
    if not isinstance(message, dict):
        return []
    content = message.get("content")
    return content if isinstance(content, list) else []


def describe_event(event: dict) -> Optional[str]:
    """
    Human-readable status for one stream event, or None.

    Tool invocations become "Tool: target" (or "Using Tool"); text
    fragments longer than a few words become a truncated snippet.
    """
    description = None
    for block in _content_blocks(event):
        if not isinstance(block, dict):
            continue
        if block.get("type") == "tool_use" and block.get("name"):
            name = str(block["name"])
            tool_input = block.get("input") if isinstance(block.get("input"), dict) else {}
            target = _tool_target(name, tool_input)
            description = _truncate(f"{name}: {target}") if target else f"Using {name}"
        elif block.get("type") == "text":
            text = str(block.get("text", "")).strip()
            if len(text) > MIN_TEXT_LENGTH:
                description = _truncate(text.splitlines()[0])
    return description


def describe_stream_event(line: str) -> Optional[str]:
    """describe_event() for a raw stream line. Malformed lines yield None."""
    event = parse_stream_line(line)
    return describe_event(event) if event else None


class OneShotRunner:
    """
    Runs the agent CLI as a subprocess and waits for it to exit.

    Non-zero exit and timeout are reported as failed RunResults, not
    raised; only a missing binary raises RunnerError.
    """

    def __init__(
        self,
        working_dir: Path,
        timeout: int = 3600,  # 1 hour default
        claude_binary: Optional[str] = None,
    ):
        self.working_dir = Path(working_dir)
        self.timeout = timeout
        self.claude_binary = claude_binary or get_claude_binary()

    def build_command(self, prompt: str) -> List[str]:
        return [
            self.claude_binary,
            "-p", prompt,
            "--dangerously-skip-permissions",
            "--output-format", "stream-json",
            "--verbose",
        ]

    def _consume(self, stream, on_progress: Optional[ProgressCallback], results: List[str]) -> None:
        """Reader thread: parse events, report progress, keep result text."""
        for line in stream:
            event = parse_stream_line(line)
            if event is None:
                continue

            if event.get("type") == "result" and event.get("result"):
                results.append(str(event["result"]))
                continue

            for block in _content_blocks(event):
                if isinstance(block, dict) and block.get("type") == "text":
                    results.append(str(block.get("text", "")))

            description = describe_event(event)
            if description and on_progress is not None:
                try:
                    on_progress(description)
                except Exception as e:
                    logger.debug(f"Progress callback failed: {e}")

    @staticmethod
    def _terminate(proc: subprocess.Popen) -> None:
        if proc.poll() is not None:
            return
        proc.terminate()
        try:
            proc.wait(timeout=5)
        except subprocess.TimeoutExpired:
            proc.kill()
            proc.wait()

    def run(
        self,
        prompt: str,
        on_progress: Optional[ProgressCallback] = None,
        workdir: Optional[Path] = None,
    ) -> RunResult:
        """Run one prompt to completion."""
        cmd = self.build_command(prompt)
        cwd = Path(workdir) if workdir else self.working_dir
        start_time = time.time()

        try:
            proc = subprocess.Popen(
                cmd,
                cwd=str(cwd),
                stdout=subprocess.PIPE,
                stderr=subprocess.DEVNULL,
                text=True,
                bufsize=1,
                env={**os.environ, "CLAUDE_CODE_ENTRYPOINT": "featureloop"},
            )
        except FileNotFoundError:
            raise RunnerError(
                f"Agent binary not found: {self.claude_binary}. "
                "Ensure it is installed and in PATH."
            )
        except OSError as e:
            raise RunnerError(f"Failed to launch {self.claude_binary}: {e}")

        results: List[str] = []
        reader = threading.Thread(
            target=self._consume,
            args=(proc.stdout, on_progress, results),
            daemon=True,
        )
        reader.start()

        try:
            exit_code = proc.wait(timeout=self.timeout)
        except subprocess.TimeoutExpired:
            self._terminate(proc)
            reader.join(timeout=5)
            logger.warning(f"One-shot run timed out after {self.timeout} seconds")
            return RunResult(
                success=False,
                timed_out=True,
                output="\n".join(results),
                error_message=f"Timed out after {self.timeout} seconds",
                duration=time.time() - start_time,
            )
        except KeyboardInterrupt:
            self._terminate(proc)
            raise

        reader.join(timeout=5)
        duration = time.time() - start_time
        output = "\n".join(results)

        if exit_code != 0:
            logger.warning(f"{self.claude_binary} exited with code {exit_code}")
            return RunResult(
                success=False,
                exit_code=exit_code,
                output=output,
                error_message=f"Exited with code {exit_code}",
                duration=duration,
            )

        return RunResult(success=True, exit_code=0, output=output, duration=duration)
