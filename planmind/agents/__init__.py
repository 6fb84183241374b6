"""Intent classification, capabilities and the conversation orchestrator."""

from .models import CapabilityName, Intent, TurnResult
from .orchestrator import Orchestrator, create_orchestrator

__all__ = [
    "CapabilityName",
    "Intent",
    "Orchestrator",
    "TurnResult",
    "create_orchestrator",
]
