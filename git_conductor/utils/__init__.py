"""Shared utilities: logging setup, retry, caching and path locks."""
