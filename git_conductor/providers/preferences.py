"""In-memory preference store."""

import copy
from pathlib import Path
from typing import Any

from git_conductor.providers.base import PreferenceStore


class InMemoryPreferenceStore(PreferenceStore):
    """Preference store backed by plain dictionaries.

    Suitable for embedding the engine in a service that loads preferences
    from its own storage at startup.

    Example:
        >>> store = InMemoryPreferenceStore(
        ...     users={"alice": {"automation_level": "semi_auto"}},
        ...     projects={"/srv/app": {"reviewers": ["bob"]}},
        ... )
    """

    def __init__(
        self,
        users: dict[str, dict[str, Any]] | None = None,
        projects: dict[str, dict[str, Any]] | None = None,
    ) -> None:
        self._users = dict(users or {})
        self._projects = {self._key(path): value for path, value in (projects or {}).items()}

    @staticmethod
    def _key(project_path: str | Path) -> str:
        return str(Path(project_path))

    async def get_user_preferences(self, user_id: str | None) -> dict[str, Any]:
        if user_id is None:
            return {}
        return copy.deepcopy(self._users.get(user_id, {}))

    async def get_project_settings(self, project_path: str | Path) -> dict[str, Any]:
        return copy.deepcopy(self._projects.get(self._key(project_path), {}))

    def set_user_preferences(self, user_id: str, preferences: dict[str, Any]) -> None:
        self._users[user_id] = dict(preferences)

    def set_project_settings(self, project_path: str | Path, settings: dict[str, Any]) -> None:
        self._projects[self._key(project_path)] = dict(settings)
