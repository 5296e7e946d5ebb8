"""AgentFlow: a workflow automation engine for AI agent graphs."""

__version__ = "1.0.0"
