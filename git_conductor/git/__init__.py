"""Git workflow orchestration.

Key Components:
    - GitWorkflowManager: state machine from validation to merge
    - BranchStrategyRegistry / MergeStrategyRegistry: branch naming and merge policy
    - PullRequestManager: validated pull request creation
    - AutoReviewService: depth-tiered automated review
    - GitWorkflowValidator, GitWorkflowMetrics, GitWorkflowAudit

Example:
    >>> from git_conductor.git import GitWorkflowManager
    >>> manager = GitWorkflowManager(git, analyzer, preferences, sink)
    >>> result = await manager.execute_workflow(task, "/srv/repo", workflow)
"""

from git_conductor.git.audit import GitWorkflowAudit
from git_conductor.git.branching import (
    BranchStrategy,
    BranchStrategyRegistry,
    FeatureBranchStrategy,
    HotfixBranchStrategy,
    ReleaseBranchStrategy,
)
from git_conductor.git.manager import GitWorkflowManager
from git_conductor.git.merging import (
    ConfirmedMergeStrategy,
    ImmediateMergeStrategy,
    ManualMergeStrategy,
    MergeStrategy,
    MergeStrategyRegistry,
)
from git_conductor.git.metrics import GitWorkflowMetrics
from git_conductor.git.pull_requests import PullRequestData, PullRequestManager
from git_conductor.git.review import AutoReviewService, calculate_overall_score
from git_conductor.git.validator import GitWorkflowValidator, ValidationResult

__all__ = [
    "AutoReviewService",
    "BranchStrategy",
    "BranchStrategyRegistry",
    "ConfirmedMergeStrategy",
    "FeatureBranchStrategy",
    "GitWorkflowAudit",
    "GitWorkflowManager",
    "GitWorkflowMetrics",
    "GitWorkflowValidator",
    "HotfixBranchStrategy",
    "ImmediateMergeStrategy",
    "ManualMergeStrategy",
    "MergeStrategy",
    "MergeStrategyRegistry",
    "PullRequestData",
    "PullRequestManager",
    "ReleaseBranchStrategy",
    "ValidationResult",
    "calculate_overall_score",
]
