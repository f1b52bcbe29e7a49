"""
Abstract base classes for collaborators.

This module defines the interfaces through which the engine reaches the
outside world. The core never talks to a VCS, an analyzer or a storage
layer directly; every collaborator is injected explicitly into the
components that need it.
"""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any


class GitService(ABC):
    """Abstract git provider.

    Implementations wrap a concrete VCS or hosting API. Every method is async.
    Errors should be raised as :class:`~git_conductor.exceptions.GitOperationError`
    (with ``conflicts`` populated for merge conflicts); any other exception is
    wrapped by the caller.
    """

    @abstractmethod
    async def create_branch(self, project_path: str | Path, name: str, base: str) -> dict[str, Any]:
        """Create branch ``name`` from ``base``.

        Args:
            project_path: Repository the branch belongs to
            name: New branch name
            base: Branch or ref to start from

        Returns:
            Provider details of the created branch (at least ``name``).

        Raises:
            GitOperationError: If the branch cannot be created.
        """
        pass

    @abstractmethod
    async def delete_branch(self, project_path: str | Path, name: str) -> None:
        """Delete branch ``name``. Deleting a missing branch is not an error."""
        pass

    @abstractmethod
    async def branch_exists(self, project_path: str | Path, name: str) -> bool:
        """Check whether branch ``name`` exists."""
        pass

    @abstractmethod
    async def create_pull_request(
        self,
        project_path: str | Path,
        source: str,
        target: str,
        meta: dict[str, Any],
    ) -> dict[str, Any]:
        """Open a pull request from ``source`` into ``target``.

        Args:
            project_path: Repository path
            source: Head branch
            target: Base branch
            meta: Title, description, labels, reviewers and draft flag

        Returns:
            Provider details, at least ``id`` and usually ``url``.

        Raises:
            GitOperationError: If the provider rejects the request.
            ConnectionError: For transient transport failures (retried).
        """
        pass

    @abstractmethod
    async def merge(
        self,
        project_path: str | Path,
        source: str,
        target: str,
        method: str,
        opts: dict[str, Any],
    ) -> dict[str, Any]:
        """Merge ``source`` into ``target`` using ``method``.

        Returns:
            Provider details. A reply with ``merged: False`` and a non-empty
            ``conflicts`` list is treated as a merge conflict.

        Raises:
            GitOperationError: On conflicts or provider errors. Never retried.
        """
        pass


class ReviewAnalyzer(ABC):
    """Opaque scoring services consumed by the automated review.

    Each method returns ``{score, issues, recommendations}`` with a score
    between 0 and 100.
    """

    @abstractmethod
    async def analyze_code_quality(self, project_path: str | Path, opts: dict[str, Any]) -> dict[str, Any]:
        pass

    @abstractmethod
    async def analyze_security(self, project_path: str | Path, opts: dict[str, Any]) -> dict[str, Any]:
        pass

    @abstractmethod
    async def analyze_test_coverage(self, project_path: str | Path, opts: dict[str, Any]) -> dict[str, Any]:
        pass

    @abstractmethod
    async def analyze_performance(self, project_path: str | Path, opts: dict[str, Any]) -> dict[str, Any]:
        pass


class PreferenceStore(ABC):
    """Per-user and per-project automation defaults."""

    @abstractmethod
    async def get_user_preferences(self, user_id: str | None) -> dict[str, Any]:
        """Preferences of ``user_id`` (``automation_level``, ``reviewers``, ...).

        Returns an empty dict when nothing is stored.
        """
        pass

    @abstractmethod
    async def get_project_settings(self, project_path: str | Path) -> dict[str, Any]:
        """Project defaults (``automation_level``, ``reviewers``, ``base_branch``, ...)."""
        pass


class ObservabilitySink(ABC):
    """Append-only consumer of metric and audit events."""

    @abstractmethod
    async def emit(self, event_type: str, payload: dict[str, Any]) -> None:
        """Record one event.

        Args:
            event_type: ``"audit"`` or ``"metric"``
            payload: JSON-serializable event body
        """
        pass
