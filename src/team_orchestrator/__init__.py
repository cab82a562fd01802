"""team-orchestrator: multi-agent team runs with a shared knowledge base."""

__version__ = "0.1.0"
