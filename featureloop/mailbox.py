"""
Shared mailbox and the router that delivers it.

Agents append framed messages to one file; a single router per project
counts delimiter lines, parses the messages appended since its cursor and
types each one into the recipient agent's input.

Framing:

    --- MESSAGE ---
    timestamp: <ISO-8601>
    from: <agent-id>
    to: <agent-id>
    <body, up to the next delimiter or EOF>

Boundaries are counted as lines equal to the delimiter, so a body that
itself contains the delimiter line is split into two messages.
"""

import json
import logging
import threading
import time
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, List, Optional

from filelock import FileLock

from .hosts.base import AgentHost, AgentHostError
from .schema import MESSAGE_DELIMITER, Message
from .ticker import RealTicker, Ticker

logger = logging.getLogger(__name__)


def _split_lines(text: str) -> List[str]:
    lines = text.split("\n")
    if lines and lines[-1] == "":
        lines.pop()
    return lines


def _header_value(line: str) -> str:
    """First whitespace-separated token after the `key:` prefix."""
    tokens = line.split(":", 1)[1].split()
    return tokens[0] if tokens else ""


def count_boundaries(text: str) -> int:
    """Number of lines exactly equal to the delimiter."""
    return sum(1 for line in _split_lines(text) if line == MESSAGE_DELIMITER)


def parse_messages(text: str, skip: int = 0) -> List[Message]:
    """
    Parse framed messages, returning those after the first `skip`.

    Header lines are read until `to:`; everything after it is body. A
    message without `to:` is returned with an empty recipient and body so
    it still occupies its slot but is never deliverable. Text before the
    first delimiter is ignored.
    """
    messages: List[Message] = []
    index = 0
    current: Optional[dict] = None

    def finish():
        if current is not None and index > skip:
            messages.append(Message(
                timestamp=current["timestamp"],
                sender=current["sender"],
                recipient=current["recipient"],
                body="\n".join(current["body"]) if current["in_body"] else "",
            ))

    for line in _split_lines(text):
        if line == MESSAGE_DELIMITER:
            finish()
            index += 1
            current = {"timestamp": "", "sender": "", "recipient": "", "body": [], "in_body": False}
            continue

        if current is None:
            continue

        if current["in_body"]:
            current["body"].append(line)
        elif line.startswith("timestamp:"):
            current["timestamp"] = _header_value(line)
        elif line.startswith("from:"):
            current["sender"] = _header_value(line)
        elif line.startswith("to:"):
            current["recipient"] = _header_value(line)
            current["in_body"] = True

    finish()
    return messages


class Mailbox:
    """Append-only message log shared by every agent of a project."""

    def __init__(self, path: Path):
        self.path = Path(path)
        self.lock_file = self.path.with_suffix(".lock")

    def read_text(self) -> str:
        try:
            return self.path.read_text(errors="replace")
        except FileNotFoundError:
            return ""

    def ensure(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.touch(exist_ok=True)

    def post(self, sender: str, recipient: str, body: str, timestamp: Optional[str] = None) -> Message:
        """Append one message in a single write, under the mailbox lock."""
        message = Message(
            timestamp=timestamp or datetime.now(timezone.utc).replace(microsecond=0).isoformat(),
            sender=sender,
            recipient=recipient,
            body=body,
        )
        text = message.render()

        self.path.parent.mkdir(parents=True, exist_ok=True)
        with FileLock(self.lock_file):
            existing = self.read_text()
            if existing and not existing.endswith("\n"):
                # A delimiter glued to a partial last line would not be counted
                text = "\n" + text

            with open(self.path, "a") as f:
                f.write(text)

        logger.debug(f"Posted message {sender} -> {recipient}")
        return message

    def boundary_count(self) -> int:
        return count_boundaries(self.read_text())

    def messages(self) -> List[Message]:
        return parse_messages(self.read_text())

    def recent(self, limit: int = 5) -> List[Message]:
        messages = [m for m in self.messages() if m.recipient]
        return messages[-limit:] if limit > 0 else []


# =============================================================================
# Router cursor
# =============================================================================


class Cursor(ABC):
    """Count of mailbox boundaries the router has fully processed."""

    @abstractmethod
    def load(self) -> int:
        ...

    @abstractmethod
    def save(self, processed: int) -> None:
        ...


class MemoryCursor(Cursor):
    """Cursor that lives only as long as the router."""

    def __init__(self, processed: int = 0):
        self.processed = processed

    def load(self) -> int:
        return self.processed

    def save(self, processed: int) -> None:
        self.processed = processed


class RouterCursor(Cursor):
    """
    Cursor persisted as JSON next to the mailbox.

    A restarted router resumes where the previous one stopped instead of
    re-delivering the whole mailbox.
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self.lock_file = self.path.with_name(f"{self.path.name}.lock")

    def load(self) -> int:
        if not self.path.exists():
            return 0

        with FileLock(self.lock_file):
            try:
                data = json.loads(self.path.read_text() or "{}")
                return max(0, int(data.get("processed", 0)))
            except (json.JSONDecodeError, TypeError, ValueError, AttributeError) as e:
                logger.warning(f"Unreadable router cursor {self.path}, starting from 0: {e}")
                return 0

    def save(self, processed: int) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with FileLock(self.lock_file):
            self.path.write_text(json.dumps({
                "processed": processed,
                "updated_at": datetime.now(timezone.utc).isoformat(),
            }, indent=2))


# =============================================================================
# Router
# =============================================================================


class MailboxRouter:
    """
    Delivers new mailbox messages to agents through an AgentHost.

    Exactly one router may run per project. Delivery is at-least-once: the
    cursor is saved after a whole batch, so a crash mid-batch re-delivers
    that batch.
    """

    def __init__(
        self,
        mailbox: Mailbox,
        host: AgentHost,
        cursor: Optional[Cursor] = None,
        ticker: Optional[Ticker] = None,
        interval: float = 2.0,
        line_delay: float = 0.1,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.mailbox = mailbox
        self.host = host
        self.cursor = cursor or MemoryCursor()
        self.ticker = ticker or RealTicker()
        self.interval = interval
        self.line_delay = line_delay
        self._sleep = sleep
        self._thread: Optional[threading.Thread] = None

    def deliver(self, message: Message) -> bool:
        """
        Type one message into its recipient.

        The first line is prefixed with the sender, every line is typed
        literally and submitted, then one final submit closes the message.
        """
        try:
            handle = self.host.resolve(message.recipient)
            if not self.host.is_alive(handle):
                logger.warning(
                    f"No running agent '{message.recipient}'; dropping message from {message.sender}"
                )
                return False

            lines = message.body.split("\n")
            lines[0] = f"[from:{message.sender}] {lines[0]}"
            for line in lines:
                if not self.host.send_input(handle, line, submit=True):
                    logger.warning(f"Delivery to {message.recipient} interrupted; message dropped")
                    return False
                self._sleep(self.line_delay)

            self.host.send_input(handle, "", submit=True)
        except AgentHostError as e:
            logger.warning(f"Could not deliver message to {message.recipient}: {e}")
            return False

        logger.info(f"Routed: {message.sender} -> {message.recipient}")
        return True

    def tick(self) -> List[Message]:
        """
        Process everything appended since the cursor.

        Returns:
            Messages delivered during this tick, in file order
        """
        text = self.mailbox.read_text()
        total = count_boundaries(text)
        processed = self.cursor.load()

        if total < processed:
            logger.warning(
                f"Mailbox has {total} messages but cursor is at {processed}; resetting cursor"
            )
            processed = 0

        if total == processed:
            return []

        delivered = []
        for message in parse_messages(text, skip=processed):
            if not message.deliverable:
                logger.debug(f"Skipping undeliverable message from '{message.sender}'")
                continue
            if self.deliver(message):
                delivered.append(message)

        self.cursor.save(total)
        return delivered

    def run(self) -> None:
        """Tick until the ticker is stopped."""
        logger.info(f"Mailbox router watching {self.mailbox.path}")
        while True:
            try:
                self.tick()
            except OSError as e:
                logger.error(f"Router tick failed: {e}")
            if not self.ticker.wait(self.interval):
                break
        logger.info("Mailbox router stopped")

    def start(self) -> threading.Thread:
        """Run the router on a background daemon thread."""
        if self._thread is not None and self._thread.is_alive():
            return self._thread
        self._thread = threading.Thread(target=self.run, name="mailbox-router", daemon=True)
        self._thread.start()
        return self._thread

    def wait(self, poll: float = 0.5) -> None:
        """Block until the router thread exits. Interruptible with Ctrl+C."""
        while self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=poll)

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        self.ticker.stop()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout=timeout)

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()
