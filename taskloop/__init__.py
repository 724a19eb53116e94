"""Autonomous worker agents that plan and act through a durable task loop."""

__version__ = "0.1.0"
