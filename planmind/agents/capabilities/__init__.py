"""Executable capabilities and the default dispatch table."""

from __future__ import annotations

from planmind.agents.capabilities.analysis import (
    AnalyzeCompatibilityCapability,
    GenerateRecommendationCapability,
)
from planmind.agents.capabilities.base import BaseCapability, apply_capability_output
from planmind.agents.capabilities.client_info import UpdateClientInfoCapability
from planmind.agents.capabilities.conversation import (
    EndConversationCapability,
    RespondToUserCapability,
)
from planmind.agents.capabilities.prices import FetchPricesCapability
from planmind.agents.capabilities.search import SearchPlansCapability
from planmind.agents.capabilities.simulation import SimulateScenarioCapability
from planmind.agents.models import CapabilityName
from planmind.interfaces.protocols import ChatCompletionService, PriceService
from planmind.retrieval.search_loop import SearchLoop
from planmind.utils.retry import RetryPolicy


def build_capabilities(
    *,
    search_loop: SearchLoop,
    completion: ChatCompletionService | None = None,
    price_service: PriceService | None = None,
    history_window: int = 5,
    price_policy: RetryPolicy | None = None,
) -> dict[CapabilityName, BaseCapability]:
    """Build the dispatch table covering every ``CapabilityName``."""
    table: dict[CapabilityName, BaseCapability] = {
        CapabilityName.UPDATE_CLIENT_INFO: UpdateClientInfoCapability(),
        CapabilityName.SEARCH_PLANS: SearchPlansCapability(search_loop),
        CapabilityName.ANALYZE_COMPATIBILITY: AnalyzeCompatibilityCapability(
            completion
        ),
        CapabilityName.FETCH_PRICES: FetchPricesCapability(
            price_service, policy=price_policy
        ),
        CapabilityName.GENERATE_RECOMMENDATION: GenerateRecommendationCapability(
            completion
        ),
        CapabilityName.RESPOND_TO_USER: RespondToUserCapability(
            completion, history_window=history_window
        ),
        CapabilityName.SIMULATE_SCENARIO: SimulateScenarioCapability(),
        CapabilityName.END_CONVERSATION: EndConversationCapability(),
    }
    return table


__all__ = [
    "AnalyzeCompatibilityCapability",
    "BaseCapability",
    "EndConversationCapability",
    "FetchPricesCapability",
    "GenerateRecommendationCapability",
    "RespondToUserCapability",
    "SearchPlansCapability",
    "SimulateScenarioCapability",
    "UpdateClientInfoCapability",
    "apply_capability_output",
    "build_capabilities",
]
