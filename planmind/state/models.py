"""Conversation state and client profile models.

All models are frozen; transitions produce new snapshots via
``model_copy(update=...)`` so a persisted snapshot is never mutated later.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Literal

from langchain_core.messages import AnyMessage
from pydantic import BaseModel, ConfigDict, Field

from planmind.retrieval.models import FusedDocument, SearchMetadata

Relationship = Literal["spouse", "child", "parent", "other"]
Compatibility = Literal["high", "medium", "low"]
PriceSource = Literal["erp", "cache", "mock"]


class Dependent(BaseModel):
    """A dependent covered by the client's plan."""

    model_config = ConfigDict(frozen=True)

    name: str | None = None
    age: int | None = Field(default=None, ge=0, le=120)
    relationship: Relationship = "other"
    health_conditions: list[str] = Field(default_factory=list)


class ClientInfo(BaseModel):
    """Partial client profile collected across the conversation."""

    model_config = ConfigDict(frozen=True)

    name: str | None = None
    age: int | None = Field(default=None, ge=0, le=120)
    city: str | None = None
    state: str | None = None
    budget: float | None = Field(default=None, gt=0, description="Monthly budget")
    dependents: list[Dependent] = Field(default_factory=list)
    health_conditions: list[str] = Field(default_factory=list)
    preferences: list[str] = Field(default_factory=list)
    current_plan: str | None = None
    employer: str | None = None

    @property
    def location(self) -> str | None:
        parts = [p for p in (self.city, self.state) if p]
        return ", ".join(parts) or None

    def has_minimum_for_search(self) -> bool:
        """Age, a location or a budget is enough to start searching."""
        return self.age is not None or self.location is not None or (
            self.budget is not None
        )

    def is_empty(self) -> bool:
        return self == ClientInfo()


class PlanAnalysis(BaseModel):
    """Compatibility analysis for a single plan."""

    model_config = ConfigDict(frozen=True)

    plan_id: str
    plan_name: str = ""
    score: float = Field(ge=0, le=100)
    compatibility: Compatibility = "medium"
    pros: list[str] = Field(default_factory=list)
    cons: list[str] = Field(default_factory=list)


class CompatibilityAnalysis(BaseModel):
    """Ranked compatibility analyses of the retrieved plans."""

    model_config = ConfigDict(frozen=True)

    ranked: list[PlanAnalysis] = Field(default_factory=list)
    top_recommendation: str | None = None
    reasoning: str = ""


class Recommendation(BaseModel):
    """Final recommendation rendered for the client."""

    model_config = ConfigDict(frozen=True)

    markdown: str = Field(min_length=1)
    top_plan_id: str | None = None
    alternative_ids: list[str] = Field(default_factory=list)
    highlights: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    next_steps: list[str] = Field(default_factory=list)


class PlanPrice(BaseModel):
    """Price for one plan as returned by the price service."""

    model_config = ConfigDict(frozen=True)

    plan_id: str
    base_price: float = Field(ge=0)
    final_price: float = Field(ge=0)
    discount: float = 0.0


class PriceQuote(BaseModel):
    """Prices for a set of plans. Advisory only; never invalidates anything."""

    model_config = ConfigDict(frozen=True)

    prices: list[PlanPrice] = Field(default_factory=list)
    source: PriceSource = "mock"


class StateError(BaseModel):
    """A degraded capability execution recorded on the conversation."""

    model_config = ConfigDict(frozen=True)

    capability: str
    message: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))


class ConversationState(BaseModel):
    """Per-thread conversation state.

    Value and version pairs are only changed together through
    ``planmind.state.cache_invalidation.apply_invalidation``.
    """

    model_config = ConfigDict(frozen=True)

    thread_id: str
    sequence: int = Field(default=0, ge=0)

    client_info: ClientInfo = Field(default_factory=ClientInfo)
    client_info_version: int = Field(default=0, ge=0)

    search_results: list[FusedDocument] = Field(default_factory=list)
    search_metadata: SearchMetadata | None = None
    search_results_version: int = Field(default=0, ge=0)

    compatibility_analysis: CompatibilityAnalysis | None = None
    analysis_version: int = Field(default=0, ge=0)

    recommendation: Recommendation | None = None
    recommendation_version: int = Field(default=0, ge=0)

    prices: PriceQuote | None = None

    last_intent: str | None = None
    last_intent_confidence: float = 0.0
    loop_iteration_count: int = Field(default=0, ge=0)

    messages: list[AnyMessage] = Field(default_factory=list)
    errors: list[StateError] = Field(default_factory=list)
    is_active: bool = True

    @property
    def versions(self) -> dict[str, int]:
        return {
            "client_info": self.client_info_version,
            "search_results": self.search_results_version,
            "analysis": self.analysis_version,
            "recommendation": self.recommendation_version,
        }

    @property
    def has_search_results(self) -> bool:
        """A search result set is present with at least one document."""
        return self.search_metadata is not None and bool(self.search_results)


__all__ = [
    "ClientInfo",
    "CompatibilityAnalysis",
    "ConversationState",
    "Dependent",
    "PlanAnalysis",
    "PlanPrice",
    "PriceQuote",
    "Recommendation",
    "Relationship",
    "StateError",
]
