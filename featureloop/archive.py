"""
Terminal archival of a finished project.

Moves ledgers, the mailbox and every specification artifact into
<project>/<state>-complete-<YYYYmmdd-HHMMSS>/ so a later run cannot
re-trigger on stale markers.
"""

import logging
import shutil
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Iterable, List, Optional

from .layout import ProjectLayout
from .schema import Marker
from .workspace import WorkspaceError, WorkspaceManager

logger = logging.getLogger(__name__)


@dataclass
class ArchiveResult:
    """Where things went."""
    archive_dir: Path
    moved: List[Path] = field(default_factory=list)
    removed_workspaces: List[str] = field(default_factory=list)


def _unique_dir(path: Path) -> Path:
    candidate = path
    suffix = 1
    while candidate.exists():
        candidate = path.with_name(f"{path.name}-{suffix}")
        suffix += 1
    return candidate


def _move(source: Path, destination: Path, moved: List[Path]) -> None:
    if not source.exists():
        return
    destination.parent.mkdir(parents=True, exist_ok=True)
    shutil.move(str(source), str(destination))
    moved.append(destination)
    logger.debug(f"Archived {source} -> {destination}")


def archive_project(
    layout: ProjectLayout,
    feature_ids: Iterable[str],
    workspaces: Optional[WorkspaceManager] = None,
    now: Optional[datetime] = None,
) -> ArchiveResult:
    """
    Archive a completed project.

    Ledgers are moved out of the workspaces before any workspace is
    removed. Workspace removal failures are logged, not raised.

    Args:
        layout: Project layout
        feature_ids: Features whose ledgers to collect
        workspaces: If given, each feature's workspace is removed afterwards
        now: Timestamp for the archive name (defaults to now)
    """
    stamp = (now or datetime.now()).strftime("%Y%m%d-%H%M%S")
    archive_dir = _unique_dir(layout.archive_dir(stamp))
    archive_dir.mkdir(parents=True)
    result = ArchiveResult(archive_dir=archive_dir)

    feature_ids = list(feature_ids)
    for feature_id in feature_ids:
        _move(layout.ledger(feature_id), archive_dir / "ledgers" / f"{feature_id}.log", result.moved)

    _move(layout.mailbox, archive_dir / layout.mailbox.name, result.moved)
    _move(layout.cursor_file, archive_dir / layout.cursor_file.name, result.moved)
    _move(layout.specs_dir, archive_dir / layout.specs_dir.name, result.moved)
    _move(layout.qa_reports_dir, archive_dir / layout.qa_reports_dir.name, result.moved)
    _move(layout.research_findings, archive_dir / layout.research_findings.name, result.moved)
    _move(layout.base_branch_file, archive_dir / layout.base_branch_file.name, result.moved)
    for marker in Marker:
        _move(layout.marker(marker), archive_dir / "markers" / marker.value, result.moved)

    logger.info(f"Archived {len(result.moved)} items to {archive_dir}")

    if workspaces is not None:
        for feature_id in feature_ids:
            try:
                if workspaces.remove(feature_id):
                    result.removed_workspaces.append(feature_id)
            except WorkspaceError as e:
                logger.warning(f"Could not remove workspace for {feature_id}: {e}")

    return result
