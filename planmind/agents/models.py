"""Pydantic models shared by the classifier, capabilities and orchestrator."""

from __future__ import annotations

from enum import StrEnum
from typing import Any, Literal

from pydantic import BaseModel, Field

from planmind.retrieval.models import SearchOutcome
from planmind.state.models import (
    CompatibilityAnalysis,
    ConversationState,
    Dependent,
    PriceQuote,
    Recommendation,
    StateError,
)


class Intent(StrEnum):
    """Closed set of conversational intents."""

    PROVIDE_DATA = "provide_data"
    SEARCH_PLANS = "search_plans"
    ANALYZE = "analyze"
    GET_PRICE = "get_price"
    RECOMMEND = "recommend"
    CHAT = "chat"
    MODIFY_DATA = "modify_data"
    SIMULATE_SCENARIO = "simulate_scenario"
    FINALIZE = "finalize"


class CapabilityName(StrEnum):
    """Closed set of executable capabilities."""

    UPDATE_CLIENT_INFO = "update_client_info"
    SEARCH_PLANS = "search_plans"
    ANALYZE_COMPATIBILITY = "analyze_compatibility"
    FETCH_PRICES = "fetch_prices"
    GENERATE_RECOMMENDATION = "generate_recommendation"
    RESPOND_TO_USER = "respond_to_user"
    SIMULATE_SCENARIO = "simulate_scenario"
    END_CONVERSATION = "end_conversation"


INTENT_TO_CAPABILITY: dict[Intent, CapabilityName] = {
    Intent.PROVIDE_DATA: CapabilityName.UPDATE_CLIENT_INFO,
    Intent.MODIFY_DATA: CapabilityName.UPDATE_CLIENT_INFO,
    Intent.SEARCH_PLANS: CapabilityName.SEARCH_PLANS,
    Intent.ANALYZE: CapabilityName.ANALYZE_COMPATIBILITY,
    Intent.GET_PRICE: CapabilityName.FETCH_PRICES,
    Intent.RECOMMEND: CapabilityName.GENERATE_RECOMMENDATION,
    Intent.CHAT: CapabilityName.RESPOND_TO_USER,
    Intent.SIMULATE_SCENARIO: CapabilityName.SIMULATE_SCENARIO,
    Intent.FINALIZE: CapabilityName.END_CONVERSATION,
}


class ScenarioChange(BaseModel):
    """Hypothetical profile change for a what-if simulation."""

    type: Literal[
        "add_dependent",
        "remove_dependent",
        "change_budget",
        "change_location",
        "other",
    ] = "other"
    dependent: Dependent | None = None
    budget: float | None = Field(default=None, gt=0)
    city: str | None = None
    state: str | None = None
    description: str = ""


class IntentClassificationResponse(BaseModel):
    """Structured output schema for intent classification.

    ``extracted_data`` stays a loose mapping here; it is validated as a client
    profile by the capability that applies it, so malformed values surface as
    client-data errors with guidance instead of schema violations.
    """

    intent: Intent
    confidence: float = Field(ge=0, le=1)
    extracted_data: dict[str, Any] | None = None
    scenario_change: ScenarioChange | None = None
    reasoning: str = ""


class IntentClassification(BaseModel):
    """Classifier verdict after the confidence threshold was applied."""

    intent: Intent
    confidence: float = Field(ge=0, le=1)
    raw_intent: Intent
    extracted_data: dict[str, Any] | None = None
    scenario_change: ScenarioChange | None = None
    degraded: bool = False


class CapabilityOutput(BaseModel):
    """Everything one capability execution contributes to the state.

    Carries produced values but never versions; the orchestrator applies it
    through the invalidation manager as one whole transition.
    """

    response: str = Field(min_length=1)
    client_info_update: dict[str, Any] | None = None
    search: SearchOutcome | None = None
    analysis: CompatibilityAnalysis | None = None
    recommendation: Recommendation | None = None
    prices: PriceQuote | None = None
    errors: list[StateError] = Field(default_factory=list)
    is_active: bool | None = None
    awaiting_user: bool = False


class DebugMetadata(BaseModel):
    """Diagnostics returned with each turn."""

    intent: Intent
    confidence: float
    versions: dict[str, int]
    capabilities_executed: list[CapabilityName] = Field(default_factory=list)
    loop_iterations: int = 0
    fallback: bool = False


class TurnResult(BaseModel):
    """Result of handling one user message."""

    response_text: str
    updated_state: ConversationState
    debug_metadata: DebugMetadata


__all__ = [
    "INTENT_TO_CAPABILITY",
    "CapabilityName",
    "CapabilityOutput",
    "DebugMetadata",
    "Intent",
    "IntentClassification",
    "IntentClassificationResponse",
    "ScenarioChange",
    "TurnResult",
]
