"""
featureloop schema and data models.

Defines the records exchanged through the filesystem: ledger events,
mailbox messages, marker files and the derived project state.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Optional

MESSAGE_DELIMITER = "--- MESSAGE ---"


class FeatureStatus(str, Enum):
    """Status a worker appends to its ledger."""

    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    BLOCKED = "BLOCKED"
    TESTING = "TESTING"
    COMPLETE = "COMPLETE"
    FAILED = "FAILED"


class Marker(str, Enum):
    """Existence-only sentinel files in the state directory."""

    SPECS_READY = "SPECS_READY"
    ALL_MERGED = "ALL_MERGED"
    QA_COMPLETE = "QA_COMPLETE"
    QA_NEEDS_FIXES = "QA_NEEDS_FIXES"
    PROJECT_COMPLETE = "PROJECT_COMPLETE"
    PR_CREATED = "PR_CREATED"
    PR_SKIPPED = "PR_SKIPPED"


class ProjectState(str, Enum):
    """Project lifecycle state, always recomputed from markers."""

    BUILDING = "BUILDING"
    ALL_MERGED = "ALL_MERGED"
    QA_PASSED = "QA_PASSED"
    QA_NEEDS_FIXES = "QA_NEEDS_FIXES"
    COMPLETE = "COMPLETE"


# =============================================================================
# Ledger
# =============================================================================


@dataclass(frozen=True)
class StatusEvent:
    """One well-formed ledger line."""

    timestamp: datetime
    status: FeatureStatus
    message: str

    def render(self) -> str:
        return f"{self.timestamp.isoformat()} [{self.status.value}] {self.message}"


@dataclass(frozen=True)
class MalformedLine:
    """A ledger line that failed strict parsing. Never counted."""

    raw: str
    reason: str


# =============================================================================
# Mailbox
# =============================================================================


@dataclass(frozen=True)
class Message:
    """A single mailbox entry. Immutable once appended."""

    timestamp: str
    sender: str
    recipient: str
    body: str

    @property
    def deliverable(self) -> bool:
        """Only messages with a recipient and a non-blank body are routed."""
        return bool(self.recipient) and bool(self.body.strip())

    def render(self) -> str:
        """Framed text as appended to the mailbox file."""
        lines = [MESSAGE_DELIMITER]
        if self.timestamp:
            lines.append(f"timestamp: {self.timestamp}")
        lines.append(f"from: {self.sender}")
        lines.append(f"to: {self.recipient}")
        lines.append(self.body.rstrip("\n"))
        return "\n".join(lines) + "\n"


# =============================================================================
# Features
# =============================================================================


@dataclass
class Feature:
    """A unit of work assigned to one worker agent."""

    id: str
    workspace: Path
    branch: str
    status: Optional[FeatureStatus] = None
    message: str = ""

    @property
    def is_complete(self) -> bool:
        return self.status == FeatureStatus.COMPLETE
