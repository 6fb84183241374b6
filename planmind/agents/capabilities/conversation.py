"""General conversation and conversation end."""

from __future__ import annotations

from pydantic import BaseModel, Field

from planmind.agents.capabilities.base import BaseCapability, error_entry
from planmind.agents.intent import format_history
from planmind.agents.models import (
    CapabilityName,
    CapabilityOutput,
    IntentClassification,
)
from planmind.interfaces.protocols import ChatCompletionService
from planmind.prompts import CHAT_PROMPT, describe_client_info
from planmind.state.models import ConversationState
from planmind.utils.exceptions import DEGRADABLE_EXCEPTIONS
from planmind.utils.monitoring import log_error_with_context

STATIC_REPLY = (
    "I'm here to help you find a health plan. Tell me your age, city, monthly "
    "budget and who else should be covered, and I'll look for options."
)

FAREWELL = (
    "Thanks for talking with me! This conversation is now closed. "
    "Come back any time to look at plans again."
)


class ChatReply(BaseModel):
    """Structured output schema for a free-form reply."""

    reply: str = Field(min_length=1)


class RespondToUserCapability(BaseCapability):
    """Answers small talk and general questions."""

    name = CapabilityName.RESPOND_TO_USER

    def __init__(
        self,
        completion: ChatCompletionService | None = None,
        *,
        history_window: int = 5,
    ) -> None:
        self._completion = completion
        self._history_window = history_window

    async def run(
        self,
        state: ConversationState,
        classification: IntentClassification,
        message: str,
    ) -> CapabilityOutput:
        if self._completion is None:
            return CapabilityOutput(response=STATIC_REPLY)
        history = state.messages
        if history and history[-1].type == "human":
            # the current message is passed separately
            history = history[:-1]
        prompt = CHAT_PROMPT.format(
            client_info=describe_client_info(state.client_info),
            history=format_history(history, self._history_window),
            message=message,
        )
        try:
            reply = await self._completion.complete(prompt, ChatReply)
        except DEGRADABLE_EXCEPTIONS as exc:
            log_error_with_context(exc, "respond_to_user")
            return CapabilityOutput(
                response=STATIC_REPLY, errors=[error_entry(self.name, exc)]
            )
        return CapabilityOutput(response=reply.reply)


class EndConversationCapability(BaseCapability):
    """Closes the conversation; the orchestrator archives it afterwards."""

    name = CapabilityName.END_CONVERSATION

    async def run(
        self,
        state: ConversationState,
        classification: IntentClassification,
        message: str,
    ) -> CapabilityOutput:
        return CapabilityOutput(response=FAREWELL, is_active=False)


__all__ = ["ChatReply", "EndConversationCapability", "RespondToUserCapability"]
