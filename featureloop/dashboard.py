"""
Read-only project dashboard.

Reads the same ledgers, markers and mailbox the supervisor reads and
renders them with rich. Never changes state.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List

from rich.console import Group
from rich.table import Table
from rich.text import Text

from .features import collect_features
from .layout import ProjectLayout
from .mailbox import Mailbox
from .markers import MarkerSet
from .schema import Feature, FeatureStatus, Marker, Message, ProjectState

STATUS_STYLES = {
    FeatureStatus.COMPLETE: "green",
    FeatureStatus.IN_PROGRESS: "yellow",
    FeatureStatus.TESTING: "cyan",
    FeatureStatus.BLOCKED: "red",
    FeatureStatus.FAILED: "red",
    FeatureStatus.PENDING: "",
}

STATE_LABELS = {
    ProjectState.COMPLETE: ("PROJECT COMPLETE", "green"),
    ProjectState.QA_PASSED: ("QA PASSED", "green"),
    ProjectState.QA_NEEDS_FIXES: ("QA NEEDS FIXES", "yellow"),
    ProjectState.ALL_MERGED: ("MERGED - QA PENDING", "cyan"),
    ProjectState.BUILDING: ("IN PROGRESS", "yellow"),
}

MESSAGE_WIDTH = 40
PREVIEW_WIDTH = 45


@dataclass
class Snapshot:
    project_name: str
    taken_at: datetime
    state: ProjectState
    features: List[Feature] = field(default_factory=list)
    markers: List[Marker] = field(default_factory=list)
    messages: List[Message] = field(default_factory=list)

    @property
    def counts(self) -> Dict[str, int]:
        counts = {status.value: 0 for status in FeatureStatus}
        counts["NO_LOG"] = 0
        for feature in self.features:
            counts[feature.status.value if feature.status else "NO_LOG"] += 1
        return counts

    @property
    def complete(self) -> int:
        return sum(1 for feature in self.features if feature.is_complete)

    def to_dict(self) -> dict:
        return {
            "project": self.project_name,
            "taken_at": self.taken_at.isoformat(),
            "state": self.state.value,
            "markers": [marker.value for marker in self.markers],
            "features": [
                {
                    "id": feature.id,
                    "branch": feature.branch,
                    "workspace": str(feature.workspace),
                    "status": feature.status.value if feature.status else None,
                    "message": feature.message,
                }
                for feature in self.features
            ],
            "counts": self.counts,
            "messages": [
                {"timestamp": m.timestamp, "from": m.sender, "to": m.recipient, "body": m.body}
                for m in self.messages
            ],
        }


def take_snapshot(layout: ProjectLayout, message_limit: int = 5) -> Snapshot:
    """Read current project state."""
    markers = MarkerSet(layout)
    return Snapshot(
        project_name=layout.project_name,
        taken_at=datetime.now(),
        state=markers.project_state(),
        features=collect_features(layout),
        markers=markers.present(),
        messages=Mailbox(layout.mailbox).recent(message_limit),
    )


def render_snapshot(snapshot: Snapshot) -> Group:
    """Rich renderable for a snapshot."""
    table = Table(title=f"{snapshot.project_name} workers")
    table.add_column("Feature", style="bold")
    table.add_column("Status")
    table.add_column("Message", style="dim")

    for feature in snapshot.features:
        if feature.status is None:
            status = Text("NO_LOG", style="dim")
        else:
            status = Text(feature.status.value, style=STATUS_STYLES[feature.status])
        table.add_row(feature.id, status, feature.message[:MESSAGE_WIDTH])

    label, style = STATE_LABELS[snapshot.state]
    if snapshot.state == ProjectState.BUILDING:
        label = f"{label} ({snapshot.complete}/{len(snapshot.features)})"
    state_line = Text.assemble(("Status: ", "bold"), (label, style))

    messages = Text()
    messages.append("Messages:\n", style="bold")
    if snapshot.messages:
        for message in snapshot.messages:
            preview = message.body.split("\n", 1)[0][:PREVIEW_WIDTH]
            messages.append(f"  {message.sender} -> {message.recipient}: {preview}\n")
    else:
        messages.append("  (none)\n", style="dim")

    footer = Text(snapshot.taken_at.strftime("%Y-%m-%d %H:%M:%S"), style="dim")
    return Group(table, state_line, messages, footer)
