"""Engine configuration.

Example:
    >>> from git_conductor.config import ConductorSettings
    >>> settings = ConductorSettings.from_yaml("conductor.yaml")
    >>> settings.review.min_score_threshold
    70.0
"""

from git_conductor.config.settings import (
    AuditConfig,
    AutomationConfig,
    BranchingConfig,
    ConductorSettings,
    ExecutionConfig,
    MergeConfig,
    PullRequestConfig,
    ReviewConfig,
)

__all__ = [
    "AuditConfig",
    "AutomationConfig",
    "BranchingConfig",
    "ConductorSettings",
    "ExecutionConfig",
    "MergeConfig",
    "PullRequestConfig",
    "ReviewConfig",
]
