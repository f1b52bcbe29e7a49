"""Observability sinks for metrics and the audit trail."""

from git_conductor.observability.sinks import FanOutSink, JsonlFileSink, LoggingSink

__all__ = ["FanOutSink", "JsonlFileSink", "LoggingSink"]
