"""Capability contract and the state transition applying its output."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import ClassVar

from langchain_core.messages import AIMessage

from planmind.agents.models import (
    CapabilityName,
    CapabilityOutput,
    IntentClassification,
)
from planmind.state.cache_invalidation import (
    apply_invalidation,
    process_client_info_update,
)
from planmind.state.models import ConversationState, StateError


class BaseCapability(ABC):
    """One executable step of the conversation.

    Implementations read the state and return a ``CapabilityOutput``; they
    never build a new state themselves.
    """

    name: ClassVar[CapabilityName]

    @abstractmethod
    async def run(
        self,
        state: ConversationState,
        classification: IntentClassification,
        message: str,
    ) -> CapabilityOutput:
        """Execute the capability.

        Args:
            state: Snapshot the capability reads from.
            classification: Verdict for the current user message.
            message: Current user message.

        Returns:
            CapabilityOutput: Values produced plus exactly one response.
        """
        raise NotImplementedError


def error_entry(capability: CapabilityName, exc: BaseException) -> StateError:
    """Record a degraded execution without echoing the error text."""
    return StateError(capability=str(capability), message=type(exc).__name__)


def apply_capability_output(
    state: ConversationState, output: CapabilityOutput
) -> ConversationState:
    """Apply a capability output to ``state`` as one transition.

    Every value/version pair goes through the invalidation manager, so a
    version can never move without its dependents being reset. The response
    becomes exactly one assistant message.
    """
    new_state = state
    if output.client_info_update:
        new_state = process_client_info_update(new_state, output.client_info_update)
    if output.search is not None:
        new_state = apply_invalidation(
            new_state,
            "search_results",
            list(output.search.documents),
            search_metadata=output.search.metadata,
        )
    if output.analysis is not None:
        new_state = apply_invalidation(new_state, "analysis", output.analysis)
    if output.recommendation is not None:
        new_state = apply_invalidation(
            new_state, "recommendation", output.recommendation
        )
    if output.prices is not None:
        new_state = apply_invalidation(new_state, "prices", output.prices)

    update: dict[str, object] = {
        "messages": [*new_state.messages, AIMessage(content=output.response)],
    }
    if output.errors:
        update["errors"] = [*new_state.errors, *output.errors]
    if output.is_active is not None:
        update["is_active"] = output.is_active
    return new_state.model_copy(update=update)


__all__ = ["BaseCapability", "apply_capability_output", "error_entry"]
