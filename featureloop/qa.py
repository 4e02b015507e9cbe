"""
QA report schema and fix-task construction.

The QA agent writes qa-reports/latest.json; the supervisor turns its
failing checks into one FIX_TASK message per affected feature.
"""

import json
import logging
from collections import OrderedDict
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError

from .prompts import FIX_TASK_TOKEN, QA_UNATTRIBUTED_TOKEN

logger = logging.getLogger(__name__)


class QAReportError(Exception):
    """The QA report is missing or does not match the schema."""
    pass


class QACheck(BaseModel):
    """Result of verifying one standard."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str = Field(..., description="Standard id, e.g. STD-T001")
    name: Optional[str] = Field(default=None, description="Human-readable standard name")
    passed: bool = Field(..., validation_alias=AliasChoices("pass", "passed"))
    details: str = Field(default="", description="Success details or error message")
    feature: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("affected_feature", "feature", "affectedFeature"),
        description="Feature responsible for a failure, if known",
    )


class QAReport(BaseModel):
    """A QA run: overall verdict plus per-standard results."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    overall_pass: bool = Field(..., validation_alias=AliasChoices("overall_pass", "overallPass"))
    timestamp: Optional[str] = None
    results: List[QACheck] = Field(default_factory=list)

    @property
    def failing(self) -> List[QACheck]:
        return [check for check in self.results if not check.passed]

    def failing_by_feature(self) -> Dict[str, List[QACheck]]:
        """Failing checks grouped by feature, in report order. Checks with no feature are left out."""
        grouped: Dict[str, List[QACheck]] = OrderedDict()
        for check in self.failing:
            feature = (check.feature or "").strip()
            if feature:
                grouped.setdefault(feature, []).append(check)
        return grouped

    def unattributed_failures(self) -> List[QACheck]:
        return [check for check in self.failing if not (check.feature or "").strip()]


def load_qa_report(path: Path) -> QAReport:
    """
    Load and validate a QA report.

    Raises:
        QAReportError: If the file is missing, not JSON, or fails validation
    """
    path = Path(path)
    try:
        data = json.loads(path.read_text())
    except FileNotFoundError:
        raise QAReportError(f"QA report not found: {path}")
    except (OSError, json.JSONDecodeError) as e:
        raise QAReportError(f"QA report unreadable: {path}: {e}")

    try:
        return QAReport.model_validate(data)
    except ValidationError as e:
        raise QAReportError(f"QA report invalid: {path}: {e.error_count()} validation errors")


def _check_line(check: QACheck) -> str:
    label = f"{check.id} ({check.name})" if check.name else check.id
    details = " ".join(check.details.split())
    return f"- {label}: {details}" if details else f"- {label}"


def build_fix_task_body(feature_id: str, checks: List[QACheck]) -> str:
    """Body of the FIX_TASK message sent to one feature's worker."""
    lines = [f"{FIX_TASK_TOKEN}: QA found {len(checks)} failing check(s) for {feature_id}."]
    lines.extend(_check_line(check) for check in checks)
    lines.append("Fix these, re-run the tests, then log IN_PROGRESS and COMPLETE again.")
    return "\n".join(lines)


def build_unattributed_body(checks: List[QACheck], base_branch: str, all_merged: str) -> str:
    """Body of the message asking the integrator to fix checks no feature owns."""
    lines = [f"{QA_UNATTRIBUTED_TOKEN}: QA found {len(checks)} failing check(s) not tied to any feature."]
    lines.extend(_check_line(check) for check in checks)
    lines.append(f"Fix these on {base_branch}, then create {all_merged} to request QA again.")
    return "\n".join(lines)
