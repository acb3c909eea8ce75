"""Toolhub — registry engine for verifying, scoring, and routing npm agent tools."""

__version__ = "1.0.0"
