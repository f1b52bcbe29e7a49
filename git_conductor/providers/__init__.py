"""Collaborator interfaces and default implementations.

Example:
    >>> from git_conductor.providers.base import GitService
    >>> class MyGit(GitService):
    ...     ...
"""
