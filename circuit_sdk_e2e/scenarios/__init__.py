"""Scenario suites driving the Circuit client end to end."""

from . import call_muting, conversation_labels

__all__ = ["call_muting", "conversation_labels"]
