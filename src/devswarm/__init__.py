"""DevSwarm - multi-agent code analysis."""

__version__ = "1.0.0"
