"""
featureloop - coordinate parallel feature agents.

Agents talk through a shared mailbox, report progress in per-feature
status ledgers, and a supervisor loop drives the project through
merge, QA, fix cycles and final archival.
"""

__version__ = "0.1.0"

from .config import LoopConfig, load_config
from .layout import ProjectLayout
from .ledger import StatusLedger, parse_status_line
from .mailbox import Mailbox, MailboxRouter, MemoryCursor, RouterCursor
from .phases import Phase, PhasePipeline
from .schema import Feature, FeatureStatus, Marker, MalformedLine, Message, ProjectState, StatusEvent
from .supervisor import SupervisorLoop, TickOutcome

__all__ = [
    "Feature",
    "FeatureStatus",
    "LoopConfig",
    "Mailbox",
    "MailboxRouter",
    "MalformedLine",
    "Marker",
    "MemoryCursor",
    "Message",
    "Phase",
    "PhasePipeline",
    "ProjectLayout",
    "ProjectState",
    "RouterCursor",
    "StatusEvent",
    "StatusLedger",
    "SupervisorLoop",
    "TickOutcome",
    "load_config",
    "parse_status_line",
]
