"""Policy-enforcement engine that checks code changes against declared decisions."""

__version__ = "0.1.0"
