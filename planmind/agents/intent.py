"""Intent classification for incoming user messages.

The classifier asks the completion service for one intent out of the closed
``Intent`` enum, a confidence score and any client data found in the
message. Verdicts below the confidence threshold are coerced to ``chat`` so
the assistant asks instead of acting on a guess. When the model cannot
answer (transient failures exhausted, or output that still violates the
schema after the corrective re-prompt) the verdict degrades to ``chat`` with
confidence 0.3.

Example:
    Classifying a message::

        classifier = IntentClassifier(completion, confidence_threshold=0.5)
        verdict = await classifier.classify("I'm 34 and live in Recife", state)
        print(verdict.intent)  # Intent.PROVIDE_DATA
"""

from __future__ import annotations

from collections.abc import Sequence

from langchain_core.messages import BaseMessage
from loguru import logger

from planmind.agents.models import (
    Intent,
    IntentClassification,
    IntentClassificationResponse,
)
from planmind.interfaces.protocols import ChatCompletionService
from planmind.prompts import CLASSIFY_INTENT_PROMPT, describe_client_info
from planmind.state.models import ConversationState
from planmind.utils.exceptions import DEGRADABLE_EXCEPTIONS
from planmind.utils.monitoring import log_error_with_context

FALLBACK_CONFIDENCE = 0.3


def degraded_classification() -> IntentClassification:
    """Verdict used when the message cannot be classified."""
    return IntentClassification(
        intent=Intent.CHAT,
        confidence=FALLBACK_CONFIDENCE,
        raw_intent=Intent.CHAT,
        degraded=True,
    )


def format_history(messages: Sequence[BaseMessage], window: int) -> str:
    """Render the last ``window`` messages as ``role: text`` lines."""
    if window <= 0 or not messages:
        return "(no previous messages)"
    lines = []
    for msg in messages[-window:]:
        role = "user" if msg.type == "human" else "assistant"
        lines.append(f"{role}: {msg.content}")
    return "\n".join(lines)


class IntentClassifier:
    """Classifies messages into the closed intent set."""

    def __init__(
        self,
        completion: ChatCompletionService | None,
        *,
        confidence_threshold: float = 0.5,
        history_window: int = 5,
    ) -> None:
        """Initialize the classifier.

        Args:
            completion: Completion service; ``None`` always degrades to chat.
            confidence_threshold: Verdicts below this become ``chat``.
            history_window: Number of recent messages included in the prompt.
        """
        if not 0.0 <= confidence_threshold <= 1.0:
            raise ValueError("confidence_threshold must be within [0, 1]")
        self._completion = completion
        self.confidence_threshold = confidence_threshold
        self.history_window = history_window
        logger.info(
            "IntentClassifier initialized (threshold={})", confidence_threshold
        )

    async def classify(
        self, message: str, state: ConversationState
    ) -> IntentClassification:
        """Classify ``message`` in the context of ``state``.

        Args:
            message: Latest user message.
            state: Conversation state; its profile and recent history are
                passed to the model. ``message`` must not already be part of
                ``state.messages``.

        Returns:
            IntentClassification: Verdict with the threshold applied.
        """
        if self._completion is None:
            return degraded_classification()

        prompt = CLASSIFY_INTENT_PROMPT.format(
            client_info=describe_client_info(state.client_info),
            history=format_history(state.messages, self.history_window),
            message=message,
        )
        try:
            response = await self._completion.complete(
                prompt, IntentClassificationResponse
            )
        except DEGRADABLE_EXCEPTIONS as exc:
            log_error_with_context(exc, "classify_intent", thread_id=state.thread_id)
            return degraded_classification()

        intent = response.intent
        if response.confidence < self.confidence_threshold:
            logger.info(
                "Low confidence {:.2f} for {}; treating as chat",
                response.confidence,
                response.intent,
            )
            intent = Intent.CHAT

        logger.info(
            "Classified intent {} (raw={}, confidence={:.2f}, message_len={})",
            intent,
            response.intent,
            response.confidence,
            len(message),
        )
        return IntentClassification(
            intent=intent,
            confidence=response.confidence,
            raw_intent=response.intent,
            extracted_data=response.extracted_data or None,
            scenario_change=response.scenario_change,
        )


__all__ = [
    "FALLBACK_CONFIDENCE",
    "IntentClassifier",
    "degraded_classification",
    "format_history",
]
