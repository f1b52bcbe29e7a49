"""Enumerations shared across the git-conductor engine."""

from enum import Enum


class AutomationLevel(str, Enum):
    """How much human confirmation a workflow requires.

    The four concrete levels are ordered
    ``manual < assisted < semi_auto < full_auto``. ``adaptive`` is not a
    concrete level; it is resolved per task from a confidence score before
    any gated stage runs.
    """

    MANUAL = "manual"
    ASSISTED = "assisted"
    SEMI_AUTO = "semi_auto"
    FULL_AUTO = "full_auto"
    ADAPTIVE = "adaptive"

    def __str__(self) -> str:
        return self.value

    @property
    def is_concrete(self) -> bool:
        """Whether this level can gate stages directly."""
        return self is not AutomationLevel.ADAPTIVE

    @property
    def rank(self) -> int:
        """Position in the concrete ordering.

        Raises:
            ValueError: For ``adaptive``, which has no fixed rank
        """
        if self is AutomationLevel.ADAPTIVE:
            raise ValueError("adaptive has no rank until it is resolved")
        return _LEVEL_ORDER.index(self)

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, AutomationLevel):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other: object) -> bool:
        if not isinstance(other, AutomationLevel):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other: object) -> bool:
        if not isinstance(other, AutomationLevel):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other: object) -> bool:
        if not isinstance(other, AutomationLevel):
            return NotImplemented
        return self.rank >= other.rank


_LEVEL_ORDER = (
    AutomationLevel.MANUAL,
    AutomationLevel.ASSISTED,
    AutomationLevel.SEMI_AUTO,
    AutomationLevel.FULL_AUTO,
)


class TaskType(str, Enum):
    """Kinds of development task the engine knows how to route."""

    FEATURE = "feature"
    BUG = "bug"
    HOTFIX = "hotfix"
    RELEASE = "release"
    REFACTOR = "refactor"
    ANALYSIS = "analysis"
    TESTING = "testing"
    DOCUMENTATION = "documentation"
    DEPLOYMENT = "deployment"
    SECURITY = "security"

    def __str__(self) -> str:
        return self.value


class StepType(str, Enum):
    """Workflow step variants."""

    ANALYSIS = "analysis"
    REFACTORING = "refactoring"
    TESTING = "testing"
    DOCUMENTATION = "documentation"

    def __str__(self) -> str:
        return self.value


class StepStatus(str, Enum):
    """Outcome of a single step execution."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"

    def __str__(self) -> str:
        return self.value


class ReviewDepth(str, Enum):
    """How many sub-reviews the automated review runs."""

    NONE = "none"
    BASIC = "basic"
    STANDARD = "standard"
    COMPREHENSIVE = "comprehensive"

    def __str__(self) -> str:
        return self.value


class ReviewStatus(str, Enum):
    """Verdict derived from the aggregate review score."""

    APPROVED = "approved"
    NEEDS_IMPROVEMENT = "needs_improvement"
    REJECTED = "rejected"
    BLOCKED = "blocked"
    SKIPPED = "skipped"

    def __str__(self) -> str:
        return self.value


class MergeMethod(str, Enum):
    """Merge methods understood by the git provider."""

    SQUASH = "squash"
    MERGE = "merge"
    REBASE = "rebase"
    FAST_FORWARD = "fast-forward"

    def __str__(self) -> str:
        return self.value


class MergeMode(str, Enum):
    """Who performs the merge at a given automation level."""

    HUMAN = "human"
    CONFIRM = "confirm"
    IMMEDIATE = "immediate"

    def __str__(self) -> str:
        return self.value


class WorkflowStage(str, Enum):
    """States of the top-level git workflow state machine."""

    VALIDATING = "validating"
    BRANCH_CREATING = "branch_creating"
    EXECUTING = "executing"
    REVIEW_GATING = "review_gating"
    MERGING = "merging"
    COMPLETED = "completed"
    FAILED = "failed"

    def __str__(self) -> str:
        return self.value

    @property
    def is_terminal(self) -> bool:
        return self in (WorkflowStage.COMPLETED, WorkflowStage.FAILED)
