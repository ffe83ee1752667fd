"""Shared usage data core for AI coding-agent subscriptions."""

__version__ = "0.1.0"
