"""
Automated pull request review.

:class:`AutoReviewService` runs analyzer-backed sub-reviews concurrently and
aggregates them into one :class:`ReviewResult`. Which sub-reviews run is
decided by the review depth:

    ============== ============ ======== ============= ===========
    depth          code_quality security test_coverage performance
    ============== ============ ======== ============= ===========
    none
    basic          x                     x
    standard       x                     x
    comprehensive  x            x        x             x
    ============== ============ ======== ============= ===========

A sub-review whose analyzer raises, times out or returns malformed data is
left out of the score instead of failing the review.
"""

import asyncio
from abc import ABC, abstractmethod
from collections.abc import Iterable, Mapping
from pathlib import Path
from types import MappingProxyType
from typing import Any

import structlog
from pydantic import ValidationError as PydanticValidationError

from git_conductor.config.settings import ReviewConfig
from git_conductor.engine.automation import gate_policy
from git_conductor.enums import AutomationLevel, ReviewDepth, ReviewStatus
from git_conductor.models.domain import ReviewResult, SubReviewResult
from git_conductor.models.review import AnalysisReport, IssueSeverity
from git_conductor.providers.base import ReviewAnalyzer

log = structlog.get_logger(__name__)


class SubReview(ABC):
    """One check contributing to the review score."""

    name: str = "base"
    depths: frozenset[ReviewDepth] = frozenset()

    def applies_to(self, depth: ReviewDepth) -> bool:
        return depth in self.depths

    @abstractmethod
    async def analyze(self, analyzer: ReviewAnalyzer, project_path: str | Path, opts: dict[str, Any]) -> Any:
        """Call the analyzer and return its raw reply."""
        pass


_EVERY_DEPTH = frozenset({ReviewDepth.BASIC, ReviewDepth.STANDARD, ReviewDepth.COMPREHENSIVE})
_COMPREHENSIVE_ONLY = frozenset({ReviewDepth.COMPREHENSIVE})


class CodeQualityReview(SubReview):
    name = "code_quality"
    depths = _EVERY_DEPTH

    async def analyze(self, analyzer: ReviewAnalyzer, project_path: str | Path, opts: dict[str, Any]) -> Any:
        return await analyzer.analyze_code_quality(project_path, opts)


class SecurityReview(SubReview):
    name = "security"
    depths = _COMPREHENSIVE_ONLY

    async def analyze(self, analyzer: ReviewAnalyzer, project_path: str | Path, opts: dict[str, Any]) -> Any:
        return await analyzer.analyze_security(project_path, opts)


class TestCoverageReview(SubReview):
    __test__ = False

    name = "test_coverage"
    depths = _EVERY_DEPTH

    async def analyze(self, analyzer: ReviewAnalyzer, project_path: str | Path, opts: dict[str, Any]) -> Any:
        return await analyzer.analyze_test_coverage(project_path, opts)


class PerformanceReview(SubReview):
    name = "performance"
    depths = _COMPREHENSIVE_ONLY

    async def analyze(self, analyzer: ReviewAnalyzer, project_path: str | Path, opts: dict[str, Any]) -> Any:
        return await analyzer.analyze_performance(project_path, opts)


def default_sub_reviews() -> dict[str, SubReview]:
    reviews: list[SubReview] = [CodeQualityReview(), SecurityReview(), TestCoverageReview(), PerformanceReview()]
    return {review.name: review for review in reviews}


def review_depth_for(level: AutomationLevel) -> ReviewDepth:
    """Review depth of a concrete automation level."""
    return gate_policy(level).review_depth


def calculate_overall_score(results: Iterable[Any]) -> float:
    """Arithmetic mean of the sub-review scores; 0 without any score.

    Accepts :class:`SubReviewResult` objects, mappings with a ``score`` key
    or any object with a ``score`` attribute. Entries without a score are
    ignored.

    Example:
        >>> calculate_overall_score([{"score": 80}, {"score": 60}])
        70.0
    """
    scores: list[float] = []
    for result in results:
        score = result.get("score") if isinstance(result, Mapping) else getattr(result, "score", None)
        if score is not None:
            scores.append(float(score))
    if not scores:
        return 0.0
    return round(sum(scores) / len(scores), 2)


class AutoReviewService:
    """Depth-tiered automated review backed by a :class:`ReviewAnalyzer`.

    Attributes:
        analyzer: External scoring services
        config: Threshold, improvement ratio and per-call timeout
    """

    def __init__(
        self,
        analyzer: ReviewAnalyzer,
        config: ReviewConfig | None = None,
        sub_reviews: Mapping[str, SubReview] | None = None,
    ) -> None:
        self.analyzer = analyzer
        self.config = config or ReviewConfig()
        self._sub_reviews: dict[str, SubReview] = dict(sub_reviews or default_sub_reviews())

    @property
    def sub_reviews(self) -> Mapping[str, SubReview]:
        return MappingProxyType(self._sub_reviews)

    def register(self, sub_review: SubReview) -> None:
        """Add or replace a sub-review."""
        self._sub_reviews[sub_review.name] = sub_review

    def resolve_depth(self, options: Mapping[str, Any]) -> ReviewDepth:
        """Depth from ``options``, else configuration, else the automation level."""
        depth = options.get("review_depth")
        if depth is not None:
            return ReviewDepth(depth)
        if self.config.default_depth is not None:
            return self.config.default_depth
        level = options.get("automation_level")
        if level is not None and AutomationLevel(level).is_concrete:
            return review_depth_for(AutomationLevel(level))
        return ReviewDepth.STANDARD

    async def review_pull_request(
        self,
        project_path: str | Path,
        pr_id: str | None,
        options: dict[str, Any] | None = None,
    ) -> ReviewResult:
        """Review the changes of pull request ``pr_id``.

        Args:
            project_path: Repository path
            pr_id: Pull request under review; None when no pull request exists
            options: ``review_depth``, ``automation_level``, ``task_type`` and
                any extra analyzer options

        Returns:
            ReviewResult with the mean score, status and flattened recommendations
        """
        options = dict(options or {})
        depth = self.resolve_depth(options)
        if depth == ReviewDepth.NONE:
            log.info("review_skipped", pr_id=pr_id, reason="review_depth_none")
            return ReviewResult(success=True, skipped=True, reason="review_depth_none", status=ReviewStatus.SKIPPED)

        selected = [review for review in self._sub_reviews.values() if review.applies_to(depth)]
        analyzer_opts = {key: value for key, value in options.items() if key != "review_depth"}
        analyzer_opts["pr_id"] = pr_id
        analyzer_opts["review_depth"] = depth.value

        log.info("review_started", pr_id=pr_id, depth=depth.value, sub_reviews=[r.name for r in selected])
        outcomes = await asyncio.gather(*(self._run_sub_review(r, project_path, analyzer_opts) for r in selected))
        sub_results = {outcome.name: outcome for outcome in outcomes}
        succeeded = [outcome for outcome in outcomes if outcome.succeeded]

        score = calculate_overall_score(succeeded)
        status = self.determine_status(score, sub_results)
        recommendations = [rec for outcome in succeeded for rec in outcome.recommendations]

        error = None
        if selected and not succeeded:
            error = "All sub-reviews failed"

        log.info(
            "review_completed",
            pr_id=pr_id,
            depth=depth.value,
            score=score,
            status=status.value,
            failed_sub_reviews=[o.name for o in outcomes if not o.succeeded],
        )
        return ReviewResult(
            success=error is None,
            data={"pr_id": pr_id, "depth": depth.value, "threshold": self.config.min_score_threshold},
            error=error,
            score=score,
            status=status,
            recommendations=recommendations,
            sub_reviews=sub_results,
        )

    async def _run_sub_review(
        self, sub_review: SubReview, project_path: str | Path, opts: dict[str, Any]
    ) -> SubReviewResult:
        try:
            raw = await asyncio.wait_for(
                sub_review.analyze(self.analyzer, project_path, dict(opts)),
                timeout=self.config.sub_review_timeout,
            )
            report = AnalysisReport.model_validate(raw)
        except asyncio.TimeoutError:
            log.warning("sub_review_timeout", sub_review=sub_review.name, timeout=self.config.sub_review_timeout)
            return SubReviewResult(name=sub_review.name, error=f"timed out after {self.config.sub_review_timeout}s")
        except PydanticValidationError as e:
            log.warning("sub_review_invalid_reply", sub_review=sub_review.name, error=str(e))
            return SubReviewResult(name=sub_review.name, error=f"invalid analyzer reply: {e.error_count()} error(s)")
        except Exception as e:
            log.warning("sub_review_failed", sub_review=sub_review.name, error=str(e))
            return SubReviewResult(name=sub_review.name, error=str(e))

        return SubReviewResult(
            name=sub_review.name,
            score=report.score,
            issues=list(report.issues),
            recommendations=list(report.recommendations),
            details={"critical_issue": report.has_critical_issue, **report.metadata},
        )

    def determine_status(self, score: float, sub_results: Mapping[str, SubReviewResult]) -> ReviewStatus:
        """Review status from the score and the security findings."""
        security = sub_results.get(SecurityReview.name)
        if security is not None and security.succeeded:
            if any(getattr(issue, "severity", None) is IssueSeverity.CRITICAL for issue in security.issues):
                return ReviewStatus.BLOCKED

        threshold = self.config.min_score_threshold
        if score >= threshold:
            return ReviewStatus.APPROVED
        if score >= threshold * self.config.improvement_ratio:
            return ReviewStatus.NEEDS_IMPROVEMENT
        return ReviewStatus.REJECTED
