"""What-if simulation on a copy-on-write fork of the conversation state.

The hypothetical change is applied to a fork through the normal invalidation
path so the report shows exactly what a real change would invalidate. The
fork is then dropped; only the response message reaches the real state.
"""

from __future__ import annotations

from planmind.agents.capabilities.base import BaseCapability
from planmind.agents.models import (
    CapabilityName,
    CapabilityOutput,
    IntentClassification,
    ScenarioChange,
)
from planmind.state.cache_invalidation import apply_invalidation
from planmind.state.merge import dependent_key, merge_client_info
from planmind.state.models import ClientInfo, ConversationState, Dependent

_PRODUCED = {
    "plan search": lambda s: s.search_metadata is not None,
    "compatibility analysis": lambda s: s.compatibility_analysis is not None,
    "recommendation": lambda s: s.recommendation is not None,
}


def _remove_dependent(info: ClientInfo, target: Dependent) -> ClientInfo:
    key = dependent_key(target)
    remaining = [d for d in info.dependents if dependent_key(d) != key]
    if len(remaining) == len(info.dependents):
        # no exact match: drop the first dependent with the same relationship
        for i, dep in enumerate(info.dependents):
            if dep.relationship == target.relationship:
                remaining = info.dependents[:i] + info.dependents[i + 1 :]
                break
    return info.model_copy(update={"dependents": remaining})


def hypothetical_profile(info: ClientInfo, change: ScenarioChange) -> ClientInfo:
    """Return the profile as it would look after ``change``."""
    if change.type == "add_dependent" and change.dependent is not None:
        return merge_client_info(info, ClientInfo(dependents=[change.dependent]))
    if change.type == "remove_dependent" and change.dependent is not None:
        return _remove_dependent(info, change.dependent)
    if change.type == "change_budget" and change.budget is not None:
        return merge_client_info(info, ClientInfo(budget=change.budget))
    if change.type == "change_location" and (change.city or change.state):
        return merge_client_info(info, ClientInfo(city=change.city, state=change.state))
    return info


def profile_diff(before: ClientInfo, after: ClientInfo) -> list[str]:
    """Describe the fields that differ between two profiles."""
    diff = []
    for field in ("age", "city", "state", "budget"):
        old, new = getattr(before, field), getattr(after, field)
        if old != new:
            diff.append(f"{field}: {old if old is not None else '-'} -> {new}")
    if before.dependents != after.dependents:
        diff.append(
            f"dependents: {len(before.dependents)} -> {len(after.dependents)}"
        )
    return diff


class SimulateScenarioCapability(BaseCapability):
    """Reports the effect of a hypothetical profile change without committing it."""

    name = CapabilityName.SIMULATE_SCENARIO

    async def run(
        self,
        state: ConversationState,
        classification: IntentClassification,
        message: str,
    ) -> CapabilityOutput:
        change = classification.scenario_change
        if change is None:
            return CapabilityOutput(
                response=(
                    "What would you like to simulate? For example adding a "
                    "dependent, changing your budget or moving to another city."
                ),
                awaiting_user=True,
            )

        after = hypothetical_profile(state.client_info, change)
        diff = profile_diff(state.client_info, after)
        if not diff:
            return CapabilityOutput(
                response=(
                    "That scenario wouldn't change your profile, so your current "
                    "results still apply."
                )
            )

        fork = apply_invalidation(state, "client_info", after)
        invalidated = [
            label
            for label, produced in _PRODUCED.items()
            if produced(state) and not produced(fork)
        ]
        what = change.description or change.type.replace("_", " ")
        response = f"Simulation ({what}): " + "; ".join(diff) + "."
        if invalidated:
            response += (
                " This would require a new " + ", ".join(invalidated) + "."
            )
        response += " Your saved profile was not changed."
        return CapabilityOutput(response=response)


__all__ = [
    "SimulateScenarioCapability",
    "hypothetical_profile",
    "profile_diff",
]
