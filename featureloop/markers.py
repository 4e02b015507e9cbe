"""
Marker files and project state inference.

Markers are zero-content files whose existence signals a transition.
Merge and QA agents create them; only the supervisor clears them.
"""

import logging
from typing import Iterable, List

from .layout import ProjectLayout
from .schema import Marker, ProjectState

logger = logging.getLogger(__name__)


def infer_project_state(present: Iterable[Marker]) -> ProjectState:
    """Project state from the set of markers present, most advanced first."""
    present = set(present)
    if Marker.PROJECT_COMPLETE in present:
        return ProjectState.COMPLETE
    if Marker.QA_COMPLETE in present:
        return ProjectState.QA_PASSED
    if Marker.QA_NEEDS_FIXES in present:
        return ProjectState.QA_NEEDS_FIXES
    if Marker.ALL_MERGED in present:
        return ProjectState.ALL_MERGED
    return ProjectState.BUILDING


class MarkerSet:
    """Existence checks for the marker files of one project."""

    def __init__(self, layout: ProjectLayout):
        self.layout = layout

    def exists(self, marker: Marker) -> bool:
        return self.layout.marker(marker).is_file()

    def touch(self, marker: Marker) -> None:
        path = self.layout.marker(marker)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.touch(exist_ok=True)

    def clear(self, marker: Marker) -> bool:
        path = self.layout.marker(marker)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        logger.info(f"Cleared marker {marker.value}")
        return True

    def present(self) -> List[Marker]:
        return [marker for marker in Marker if self.exists(marker)]

    def project_state(self) -> ProjectState:
        return infer_project_state(self.present())
