"""Home Orchestrator: intent orchestration core for home assistants."""

__version__ = "0.1.0"
