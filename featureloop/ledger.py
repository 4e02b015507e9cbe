"""
Per-feature status ledger.

Each worker appends `<ISO-8601> [<STATUS>] <text>` lines to its own
status.log. The ledger is a log, not a guarded automaton: any status may
follow any other. Readers only ever ask for the last well-formed event.
"""

import logging
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional, Union

from .schema import FeatureStatus, MalformedLine, StatusEvent

logger = logging.getLogger(__name__)

LINE_PATTERN = re.compile(r"^(?P<timestamp>\S+) \[(?P<status>[^\]]+)\](?: (?P<text>.*))?$")

ParsedLine = Union[StatusEvent, MalformedLine]


def _parse_timestamp(value: str) -> Optional[datetime]:
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        return None


def parse_status_line(line: str) -> ParsedLine:
    """
    Strictly parse one ledger line.

    Returns a StatusEvent for a well-formed line, otherwise a MalformedLine
    describing why it was rejected. Never raises.
    """
    raw = line.rstrip("\r\n")

    match = LINE_PATTERN.match(raw)
    if not match:
        return MalformedLine(raw=raw, reason="not a ledger line")

    timestamp = _parse_timestamp(match.group("timestamp"))
    if timestamp is None:
        return MalformedLine(raw=raw, reason="invalid timestamp")

    try:
        status = FeatureStatus(match.group("status"))
    except ValueError:
        return MalformedLine(raw=raw, reason=f"unknown status {match.group('status')!r}")

    return StatusEvent(
        timestamp=timestamp,
        status=status,
        message=(match.group("text") or "").strip(),
    )


class StatusLedger:
    """Reader/appender for one feature's status.log."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def _lines(self) -> List[str]:
        try:
            return self.path.read_text(errors="replace").splitlines()
        except FileNotFoundError:
            return []

    def events(self) -> List[StatusEvent]:
        """All well-formed events, in file order. Malformed lines are skipped."""
        events = []
        for line in self._lines():
            parsed = parse_status_line(line)
            if isinstance(parsed, StatusEvent):
                events.append(parsed)
        return events

    def current(self) -> Optional[StatusEvent]:
        """Last well-formed event, scanning from the end of the file."""
        for line in reversed(self._lines()):
            parsed = parse_status_line(line)
            if isinstance(parsed, StatusEvent):
                return parsed
        return None

    def current_status(self) -> Optional[FeatureStatus]:
        event = self.current()
        return event.status if event else None

    def append(self, status: FeatureStatus, message: str) -> StatusEvent:
        """Append one event as a single line (newlines in the message are flattened)."""
        event = StatusEvent(
            timestamp=datetime.now(timezone.utc).replace(microsecond=0),
            status=FeatureStatus(status),
            message=" ".join(message.split()),
        )
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "a") as f:
            f.write(event.render() + "\n")
        return event

    def initialize(self, message: str = "Workspace initialized") -> bool:
        """Create the ledger with a PENDING line unless it already exists."""
        if self.path.exists():
            return False
        self.append(FeatureStatus.PENDING, message)
        logger.debug(f"Initialized ledger {self.path}")
        return True
