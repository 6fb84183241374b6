"""Plan search capability backed by the adaptive search loop."""

from __future__ import annotations

from planmind.agents.capabilities.base import BaseCapability
from planmind.agents.models import (
    CapabilityName,
    CapabilityOutput,
    IntentClassification,
)
from planmind.retrieval.models import FusedDocument
from planmind.retrieval.search_loop import SearchLoop
from planmind.state.models import ConversationState

MAX_LISTED = 5


def plan_label(doc: FusedDocument) -> str:
    """Human label for a plan document from its metadata."""
    name = doc.metadata.get("plan_name") or doc.metadata.get("plan_id") or doc.id
    operator = doc.metadata.get("operator")
    return f"{name} ({operator})" if operator else str(name)


class SearchPlansCapability(BaseCapability):
    """Runs the search loop for the current profile."""

    name = CapabilityName.SEARCH_PLANS

    def __init__(self, search_loop: SearchLoop) -> None:
        self._search_loop = search_loop

    async def run(
        self,
        state: ConversationState,
        classification: IntentClassification,
        message: str,
    ) -> CapabilityOutput:
        outcome = await self._search_loop.run(state.client_info)
        docs = outcome.documents
        if not docs:
            return CapabilityOutput(
                response=(
                    "I couldn't find plans matching your profile yet. Could you "
                    "share more details, like your city or the coverage you need?"
                ),
                search=outcome,
                awaiting_user=True,
            )

        seen: list[str] = []
        for doc in docs:
            label = plan_label(doc)
            if label not in seen:
                seen.append(label)
        lines = [f"- {label}" for label in seen[:MAX_LISTED]]
        response = (
            f"I found {len(docs)} relevant documents covering {len(seen)} plan(s):\n"
            + "\n".join(lines)
        )
        if outcome.metadata.limited_results:
            response += (
                "\n\nResults are limited; more details about your needs would "
                "help me find better matches."
            )
        return CapabilityOutput(response=response, search=outcome)


__all__ = ["SearchPlansCapability", "plan_label"]
