"""git-conductor: automation-level gated git workflow orchestration."""

__version__ = "0.1.0"
