"""
Configuration system using Pydantic for type-safe settings management.

This module provides configuration classes for every tunable part of the
engine: step execution, automation level resolution, review gating, branch
naming, merging and the audit trail.
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from git_conductor.enums import AutomationLevel, MergeMethod, ReviewDepth
from git_conductor.exceptions import ConfigurationError
from git_conductor.utils import logging_config


class ExecutionConfig(BaseModel):
    """Step execution behaviour."""

    max_concurrent_steps: int = Field(
        default=4, ge=1, le=64, description="Global cap on simultaneously executing steps"
    )
    strategy: Literal["optimized", "batch", "smart"] = Field(
        default="optimized", description="Execution strategy used when none is given"
    )
    cache_ttl_seconds: int = Field(default=3600, ge=1, description="Lifetime of cached step outputs")
    cache_max_size: int = Field(default=500, ge=1, description="Maximum cached step outputs")
    batch_size: int = Field(default=10, ge=1, description="Maximum steps combined into one batch call")
    smart_history_window: int = Field(
        default=50, ge=1, description="Number of past executions per step type used for predictions"
    )
    max_retained_results: int = Field(
        default=1000, ge=1, description="Finished workflow results kept for lookup; recoverable ones are always kept"
    )


class ConfidenceWeights(BaseModel):
    """Weights of the signals combined into an adaptive confidence score."""

    review_pass_rate: float = Field(default=0.4, ge=0.0)
    historical_success_rate: float = Field(default=0.4, ge=0.0)
    model_confidence: float = Field(default=0.2, ge=0.0)

    @model_validator(mode="after")
    def validate_total(self) -> ConfidenceWeights:
        """Reject an all-zero weighting."""
        if self.review_pass_rate + self.historical_success_rate + self.model_confidence <= 0:
            raise ValueError("At least one confidence weight must be positive")
        return self


class AdaptiveThresholds(BaseModel):
    """Confidence cut-offs for adaptive level resolution.

    A score below ``manual_below`` resolves to manual, below ``assisted_below``
    to assisted, below ``semi_auto_below`` to semi_auto, otherwise full_auto.
    """

    manual_below: float = Field(default=0.5, ge=0.0, le=1.0)
    assisted_below: float = Field(default=0.7, ge=0.0, le=1.0)
    semi_auto_below: float = Field(default=0.85, ge=0.0, le=1.0)

    @model_validator(mode="after")
    def validate_order(self) -> AdaptiveThresholds:
        """Thresholds must be non-decreasing."""
        if not (self.manual_below <= self.assisted_below <= self.semi_auto_below):
            raise ValueError("Adaptive thresholds must satisfy manual_below <= assisted_below <= semi_auto_below")
        return self


class AutomationConfig(BaseModel):
    """Automation level resolution."""

    thresholds: AdaptiveThresholds = Field(default_factory=AdaptiveThresholds)
    weights: ConfidenceWeights = Field(default_factory=ConfidenceWeights)
    priority_ceilings: dict[str, AutomationLevel] = Field(
        default_factory=lambda: {
            "critical": AutomationLevel.MANUAL,
            "urgent": AutomationLevel.MANUAL,
            "emergency": AutomationLevel.MANUAL,
            "high": AutomationLevel.SEMI_AUTO,
        },
        description="Highest level adaptive resolution may reach for a task priority",
    )


class ReviewConfig(BaseModel):
    """Automated review and review gate."""

    min_score_threshold: float = Field(default=70.0, ge=0.0, le=100.0, description="Minimum score to merge")
    improvement_ratio: float = Field(
        default=0.8, ge=0.0, le=1.0, description="Fraction of the threshold still rated needs_improvement"
    )
    sub_review_timeout: float = Field(default=120.0, gt=0, description="Timeout per analyzer call in seconds")
    default_depth: ReviewDepth | None = Field(
        default=None, description="Fixed review depth; derived from the automation level when unset"
    )
    gate_full_auto: bool = Field(
        default=False, description="Also block full_auto merges on a low review score"
    )


class BranchingConfig(BaseModel):
    """Branch naming."""

    default_base_branch: str = Field(default="main", description="Base branch for new workflow branches")
    feature_prefix: str = Field(default="feature")
    hotfix_prefix: str = Field(default="hotfix")
    release_prefix: str = Field(default="release")
    max_length: int = Field(default=100, ge=20, le=255, description="Maximum branch name length")
    max_title_length: int = Field(default=40, ge=5, description="Maximum length of the title slug")


class MergeConfig(BaseModel):
    """Merge behaviour."""

    delete_source_branch: bool = Field(default=True, description="Delete the workflow branch after merging")
    delete_branch_on_failure: bool = Field(
        default=True, description="Delete the workflow branch when execution fails"
    )
    method_overrides: dict[str, MergeMethod] = Field(
        default_factory=dict, description="Merge method per task type, overriding the built-in mapping"
    )


class PullRequestConfig(BaseModel):
    """Pull request creation."""

    max_attempts: int = Field(default=3, ge=1, le=10, description="Attempts for transient provider errors")
    backoff_factor: float = Field(default=2.0, ge=0.0, description="Exponential backoff base in seconds")
    draft_for_manual: bool = Field(default=True, description="Open pull requests as drafts at manual level")


class AuditConfig(BaseModel):
    """Audit trail and observability."""

    enabled: bool = Field(default=True)
    jsonl_path: str | None = Field(default=None, description="Append audit and metric events to this JSONL file")


class ConductorSettings(BaseSettings):
    """Main engine settings.

    This class combines all configuration sections and provides methods
    for loading from YAML files with environment variable interpolation.
    """

    model_config = SettingsConfigDict(
        env_prefix="CONDUCTOR_",
        env_nested_delimiter="__",
        case_sensitive=False,
    )

    log_level: str = Field(default="INFO", description="Minimum log level")
    execution: ExecutionConfig = Field(default_factory=ExecutionConfig)
    automation: AutomationConfig = Field(default_factory=AutomationConfig)
    review: ReviewConfig = Field(default_factory=ReviewConfig)
    branching: BranchingConfig = Field(default_factory=BranchingConfig)
    merge: MergeConfig = Field(default_factory=MergeConfig)
    pull_requests: PullRequestConfig = Field(default_factory=PullRequestConfig)
    audit: AuditConfig = Field(default_factory=AuditConfig)

    @property
    def audit_path(self) -> Path | None:
        """Get the JSONL audit path as a Path object."""
        return Path(self.audit.jsonl_path) if self.audit.jsonl_path else None

    def configure_logging(self, json_output: bool = True) -> None:
        """Configure structlog at ``log_level``."""
        logging_config.configure_logging(self.log_level, json_output=json_output)

    @classmethod
    def from_yaml(cls, config_path: str | Path) -> ConductorSettings:
        """Load settings from YAML file with environment variable interpolation.

        Supports ${VAR_NAME} syntax for environment variable substitution.

        Args:
            config_path: Path to YAML configuration file

        Returns:
            ConductorSettings instance

        Raises:
            ConfigurationError: If config file is invalid or missing required fields
        """
        config_file = Path(config_path)
        if not config_file.exists():
            raise ConfigurationError(f"Configuration file not found: {config_path}")

        try:
            with open(config_file) as f:
                yaml_content = f.read()
        except OSError as e:
            raise ConfigurationError(f"Cannot read configuration file: {config_path}") from e

        try:
            yaml_content = cls._interpolate_env_vars(yaml_content)
        except ValueError as e:
            raise ConfigurationError(f"Invalid environment variable reference in config: {e}") from e

        try:
            config_dict = yaml.safe_load(yaml_content)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML syntax in {config_path}: {e}") from e

        if config_dict is None:
            config_dict = {}
        if not isinstance(config_dict, dict):
            raise ConfigurationError("Configuration must be a YAML object, not a list or scalar")

        try:
            return cls(**config_dict)
        except Exception as e:
            raise ConfigurationError(f"Failed to validate configuration: {e}") from e

    @staticmethod
    def _interpolate_env_vars(content: str) -> str:
        """Interpolate ${VAR_NAME} placeholders with environment variables.

        Supports two syntaxes:
        - ${VAR_NAME} - Required environment variable (raises if not set)
        - ${VAR_NAME:-default} - Optional with default value

        YAML comment lines are left untouched.

        Raises:
            ValueError: If a required environment variable is not set
        """
        pattern = re.compile(r"\$\{([A-Z_][A-Z0-9_]*)(?::-([^}]*))?\}")

        def replace_var(match: re.Match[str]) -> str:
            var_name = match.group(1)
            default_value = match.group(2)
            value = os.getenv(var_name)

            if value is not None:
                return value
            if default_value is not None:
                return default_value
            raise ValueError(f"Environment variable {var_name} is not set")

        def process_line(line: str) -> str:
            if line.lstrip().startswith("#"):
                return line
            return pattern.sub(replace_var, line)

        return "\n".join(process_line(line) for line in content.split("\n"))
