"""Collect and correct the client profile."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from loguru import logger
from pydantic import ValidationError

from planmind.agents.capabilities.base import BaseCapability, error_entry
from planmind.agents.models import (
    CapabilityName,
    CapabilityOutput,
    IntentClassification,
)
from planmind.state.merge import merge_client_info
from planmind.state.models import ClientInfo, ConversationState
from planmind.utils.exceptions import ClientDataValidationError

_FIELD_LABELS = {
    "age": "age",
    "city": "city",
    "state": "state",
    "budget": "monthly budget",
    "dependents": "dependents",
    "health_conditions": "health conditions",
}


def validate_client_data(data: Mapping[str, Any]) -> ClientInfo:
    """Validate extracted client data as a partial profile.

    Raises:
        ClientDataValidationError: With guidance naming the offending fields.
    """
    try:
        return ClientInfo.model_validate(dict(data))
    except ValidationError as exc:
        problems = []
        fields = []
        for err in exc.errors():
            field = str(err["loc"][0]) if err["loc"] else "data"
            fields.append(field)
            problems.append(f"{_FIELD_LABELS.get(field, field)} ({err['msg']})")
        raise ClientDataValidationError(
            f"invalid client data: {', '.join(fields)}",
            field=fields[0] if fields else None,
            guidance="Some of the information doesn't look right: "
            + "; ".join(problems)
            + ". Could you check it?",
        ) from exc


def missing_for_search(info: ClientInfo) -> list[str]:
    """Fields worth asking for while the profile is below the search minimum."""
    if info.has_minimum_for_search():
        return []
    return ["age", "city", "monthly budget"]


def summarize_profile(info: ClientInfo) -> str:
    parts = []
    if info.name:
        parts.append(info.name)
    if info.age is not None:
        parts.append(f"{info.age} years old")
    if info.location:
        parts.append(f"in {info.location}")
    if info.budget is not None:
        parts.append(f"budget up to {info.budget:,.2f}/month")
    if info.dependents:
        parts.append(f"{len(info.dependents)} dependent(s)")
    if info.health_conditions:
        parts.append(f"conditions: {', '.join(info.health_conditions)}")
    return ", ".join(parts) or "no details yet"


class UpdateClientInfoCapability(BaseCapability):
    """Merges data extracted from the message into the profile."""

    name = CapabilityName.UPDATE_CLIENT_INFO

    async def run(
        self,
        state: ConversationState,
        classification: IntentClassification,
        message: str,
    ) -> CapabilityOutput:
        data = classification.extracted_data
        if not data:
            missing = missing_for_search(state.client_info)
            if missing:
                return CapabilityOutput(
                    response=(
                        "To find the right plan for you I need a few details. "
                        f"Could you tell me your {', '.join(missing)}?"
                    ),
                    awaiting_user=True,
                )
            return CapabilityOutput(
                response=(
                    "Your profile so far: "
                    f"{summarize_profile(state.client_info)}. "
                    "Tell me anything you'd like to add or change."
                ),
                awaiting_user=True,
            )

        try:
            incoming = validate_client_data(data)
        except ClientDataValidationError as exc:
            logger.warning("Rejected client data update: field={}", exc.field)
            return CapabilityOutput(
                response=exc.guidance,
                errors=[error_entry(self.name, exc)],
                awaiting_user=True,
            )

        merged = merge_client_info(state.client_info, incoming)
        missing = missing_for_search(merged)
        if missing:
            response = (
                f"Thanks! So far I have: {summarize_profile(merged)}. "
                f"To search for plans I still need your {', '.join(missing)}."
            )
        else:
            response = f"Got it. Your profile: {summarize_profile(merged)}."
            if merged != state.client_info and state.search_metadata is not None:
                response += (
                    " Earlier plan results were cleared since your profile changed."
                )
        return CapabilityOutput(
            response=response,
            client_info_update=incoming.model_dump(exclude_unset=True),
            awaiting_user=bool(missing),
        )


__all__ = [
    "UpdateClientInfoCapability",
    "missing_for_search",
    "summarize_profile",
    "validate_client_data",
]
