"""
Feature registry.

The canonical list is specs/.features (one id per line, blank and `#`
lines ignored). Without it, feature ids are derived from the names of
the spec files in specs/features/.
"""

import logging
import re
from datetime import datetime
from pathlib import Path
from typing import Iterable, List, Optional

from .layout import ProjectLayout
from .ledger import StatusLedger
from .prompts import FEATURE_SPEC_TEMPLATE
from .schema import Feature

logger = logging.getLogger(__name__)

FEATURE_NAME_PATTERN = re.compile(r"^[a-zA-Z][a-zA-Z0-9_-]*$")
MAX_FEATURE_NAME_LENGTH = 64
SPEC_SUFFIX = ".spec.md"


class FeatureError(Exception):
    """Base exception for feature registry operations."""
    pass


class NoFeaturesError(FeatureError):
    """No features could be discovered; nothing may be launched."""
    pass


class InvalidFeatureNameError(FeatureError):
    """Feature id is not usable as a branch, window and directory name."""
    pass


class FeatureExistsError(FeatureError):
    """A spec for this feature already exists."""
    pass


def validate_feature_name(name: str) -> str:
    """
    Check a feature id.

    Raises:
        InvalidFeatureNameError: If the name is empty, too long, or has
            characters outside letters, digits, '-' and '_'
    """
    if not name:
        raise InvalidFeatureNameError("Feature name cannot be empty")
    if len(name) > MAX_FEATURE_NAME_LENGTH:
        raise InvalidFeatureNameError(
            f"Feature name too long ({len(name)} > {MAX_FEATURE_NAME_LENGTH}): {name}"
        )
    if not FEATURE_NAME_PATTERN.match(name):
        raise InvalidFeatureNameError(
            f"Invalid feature name '{name}': must start with a letter and contain only "
            "letters, digits, '-' and '_'"
        )
    return name


def normalize_feature_name(raw: str) -> str:
    """Lowercase, spaces to dashes, drop everything else non-alphanumeric."""
    name = raw.strip().lower().replace(" ", "-")
    return re.sub(r"[^a-z0-9-]", "", name)


def parse_feature_list(text: str) -> List[str]:
    """Ids from a feature list, in order, without duplicates."""
    ids = []
    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        if line not in ids:
            ids.append(line)
    return ids


def feature_ids_from_specs(layout: ProjectLayout) -> List[str]:
    """Ids derived from `<id>.spec.md` files, sorted."""
    if not layout.feature_specs_dir.is_dir():
        return []
    return sorted(
        path.name[:-len(SPEC_SUFFIX)]
        for path in layout.feature_specs_dir.glob(f"*{SPEC_SUFFIX}")
        if path.is_file()
    )


def write_feature_list(path: Path, ids: Iterable[str]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("".join(f"{feature_id}\n" for feature_id in ids))


def read_feature_list(layout: ProjectLayout) -> List[str]:
    """The registered features: the feature list if present, else spec names."""
    if layout.features_file.exists():
        return parse_feature_list(layout.features_file.read_text(errors="replace"))
    return feature_ids_from_specs(layout)


def discover_features(layout: ProjectLayout) -> List[str]:
    """
    Feature ids to launch workers for.

    Raises:
        NoFeaturesError: If neither the feature list nor the specs directory
            yields a single id
    """
    ids = read_feature_list(layout)
    if not ids:
        raise NoFeaturesError(
            f"No features found. Create feature specs in {layout.feature_specs_dir}/*{SPEC_SUFFIX} "
            f"or list features in {layout.features_file} (one per line)"
        )
    return ids


def register_feature(layout: ProjectLayout, feature_id: str) -> bool:
    """Append an id to the feature list unless it is already there."""
    ids = read_feature_list(layout)
    if feature_id in ids and layout.features_file.exists():
        return False
    if feature_id not in ids:
        ids.append(feature_id)
    write_feature_list(layout.features_file, ids)
    return True


def remove_feature(layout: ProjectLayout, feature_id: str) -> bool:
    """Drop an id from the feature list. Its spec and workspace are left alone."""
    if not layout.features_file.exists():
        return False
    ids = parse_feature_list(layout.features_file.read_text(errors="replace"))
    if feature_id not in ids:
        return False
    write_feature_list(layout.features_file, [i for i in ids if i != feature_id])
    logger.info(f"Removed {feature_id} from the feature list")
    return True


def add_feature(
    layout: ProjectLayout,
    feature_id: str,
    description: str,
    now: Optional[datetime] = None,
) -> Path:
    """
    Create a bare spec for a new feature and register it.

    Returns:
        Path of the new spec file

    Raises:
        InvalidFeatureNameError: If the id is invalid
        FeatureExistsError: If the feature already has a spec
    """
    validate_feature_name(feature_id)
    spec_path = layout.feature_spec(feature_id)
    if spec_path.exists():
        raise FeatureExistsError(f"Feature already exists: {feature_id}")

    now = now or datetime.now()
    spec_path.parent.mkdir(parents=True, exist_ok=True)
    spec_path.write_text(FEATURE_SPEC_TEMPLATE.render({
        "feature_id": feature_id,
        "stamp": now.strftime("%Y%m%d%H%M"),
        "created": now.strftime("%Y-%m-%d"),
        "description": description.strip() or "(no description provided)",
    }))
    register_feature(layout, feature_id)
    logger.info(f"Created {spec_path}")
    return spec_path


def load_feature(layout: ProjectLayout, feature_id: str) -> Feature:
    """A feature with the latest status read from its ledger."""
    event = StatusLedger(layout.ledger(feature_id)).current()
    return Feature(
        id=feature_id,
        workspace=layout.workspace(feature_id),
        branch=layout.feature_branch(feature_id),
        status=event.status if event else None,
        message=event.message if event else "",
    )


def collect_features(layout: ProjectLayout) -> List[Feature]:
    """Every registered feature, plus any workspace that is no longer listed."""
    ids = read_feature_list(layout)
    if layout.worktrees_dir.is_dir():
        for workspace in sorted(layout.worktrees_dir.glob("feature-*")):
            feature_id = workspace.name[len("feature-"):]
            if workspace.is_dir() and feature_id not in ids:
                ids.append(feature_id)
    return [load_feature(layout, feature_id) for feature_id in ids]
