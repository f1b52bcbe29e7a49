"""Validated analyzer output.

Analyzers are opaque external services. Their raw replies are parsed into
:class:`AnalysisReport` so that the review service only ever aggregates
well-formed scores.

Example:
    >>> report = AnalysisReport.model_validate(
    ...     {"score": 82, "issues": [], "recommendations": ["Add docstrings"]}
    ... )
    >>> report.score
    82.0
"""

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator


class IssueSeverity(str, Enum):
    """Severity attached to an analyzer finding."""

    INFO = "info"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class AnalysisIssue(BaseModel):
    """A single finding reported by an analyzer."""

    message: str = Field(..., description="Description of the finding")
    severity: IssueSeverity = Field(default=IssueSeverity.MEDIUM, description="Finding severity")
    file_path: str | None = Field(default=None, description="File the finding refers to")
    line: int | None = Field(default=None, ge=1, description="Line number, when known")

    @field_validator("severity", mode="before")
    @classmethod
    def normalize_severity(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.lower()
        return value


class AnalysisReport(BaseModel):
    """Normalized reply of one analyzer call."""

    score: float = Field(..., ge=0.0, le=100.0, description="Score between 0 and 100")
    issues: list[AnalysisIssue] = Field(default_factory=list, description="Findings")
    recommendations: list[str] = Field(default_factory=list, description="Suggested improvements")
    metadata: dict[str, Any] = Field(default_factory=dict, description="Analyzer specific extras")

    @field_validator("issues", mode="before")
    @classmethod
    def coerce_issues(cls, value: Any) -> Any:
        """Accept bare strings as issue messages."""
        if isinstance(value, list):
            return [{"message": item} if isinstance(item, str) else item for item in value]
        return value

    @property
    def has_critical_issue(self) -> bool:
        return any(issue.severity is IssueSeverity.CRITICAL for issue in self.issues)
