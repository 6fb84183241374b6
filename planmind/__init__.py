"""PlanMind: agentic retrieval and orchestration for health-plan advisory chats."""

__version__ = "0.1.0"
