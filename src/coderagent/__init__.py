"""Coding-agent glue: HTTP front door, tool-call hooks, plan review and a hybrid browser agent."""

__version__ = "0.3.0"
