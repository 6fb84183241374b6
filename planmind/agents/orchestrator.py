"""Per-conversation orchestrator.

Each user message runs one turn::

    RECEIVE -> CLASSIFY_INTENT -> ROUTE -> EXECUTE -> INVALIDATE -> RESPOND

Routing resolves the requested capability through its prerequisites (for
example ``recommend -> analyze -> search -> update_client_info``) and then
walks back toward the request in the same turn. Every routing decision counts
against ``max_loop_iterations``; hitting the bound ends the turn with a
fallback response instead of raising. Turns on the same thread are serialized
by a per-thread lock; different threads run concurrently.
"""

from __future__ import annotations

import asyncio
import weakref
from collections.abc import Callable, Mapping

from langchain_core.messages import HumanMessage
from loguru import logger

from planmind.agents.capabilities import (
    BaseCapability,
    apply_capability_output,
    build_capabilities,
)
from planmind.agents.capabilities.client_info import validate_client_data
from planmind.agents.intent import IntentClassifier, degraded_classification
from planmind.agents.models import (
    INTENT_TO_CAPABILITY,
    CapabilityName,
    CapabilityOutput,
    DebugMetadata,
    Intent,
    IntentClassification,
    TurnResult,
)
from planmind.agents.registry.llm_client import (
    LangChainCompletionService,
    LangChainEmbeddingService,
    RetryingCompletionService,
)
from planmind.config.langchain_factory import build_chat_model, build_embeddings
from planmind.config.settings import PlanMindSettings, settings
from planmind.interfaces.protocols import (
    ConversationStore,
    PriceService,
    VectorStore,
)
from planmind.persistence.conversation_store import LangGraphConversationStore
from planmind.retrieval.search_loop import SearchLoop
from planmind.retrieval.vector_store.qdrant_store import QdrantVectorStore
from planmind.state.cache_invalidation import is_stale, process_client_info_update
from planmind.state.models import ConversationState, StateError
from planmind.utils.exceptions import ClientDataValidationError
from planmind.utils.monitoring import (
    log_error_with_context,
    performance_timer,
    setup_logging,
)
from planmind.utils.retry import RetryPolicy

PrerequisiteFn = Callable[[CapabilityName, ConversationState], CapabilityName | None]

FALLBACK_RESPONSE = (
    "Sorry, I couldn't complete that request. Could you tell me again what "
    "you'd like to do? I can search plans, compare them or give you a "
    "recommendation."
)

# Intents whose messages may carry profile data applied before routing.
DATA_BEARING_INTENTS = frozenset(
    {Intent.SEARCH_PLANS, Intent.ANALYZE, Intent.GET_PRICE, Intent.RECOMMEND}
)


def _fallback_output(capability: str, reason: str) -> CapabilityOutput:
    return CapabilityOutput(
        response=FALLBACK_RESPONSE,
        errors=[StateError(capability=capability, message=reason)],
    )


def _search_fresh(state: ConversationState) -> bool:
    return state.has_search_results and not is_stale(state, "search_results")


def default_prerequisite(
    capability: CapabilityName, state: ConversationState
) -> CapabilityName | None:
    """Return the capability that must run before ``capability``, if any."""
    if capability == CapabilityName.SEARCH_PLANS:
        if not state.client_info.has_minimum_for_search():
            return CapabilityName.UPDATE_CLIENT_INFO
    elif capability in (
        CapabilityName.ANALYZE_COMPATIBILITY,
        CapabilityName.FETCH_PRICES,
    ):
        if not _search_fresh(state):
            return CapabilityName.SEARCH_PLANS
    elif capability == CapabilityName.GENERATE_RECOMMENDATION:
        if state.compatibility_analysis is None or is_stale(state, "analysis"):
            return CapabilityName.ANALYZE_COMPATIBILITY
    return None


class Orchestrator:
    """Routes user messages to capabilities and persists each turn."""

    def __init__(
        self,
        classifier: IntentClassifier,
        capabilities: Mapping[CapabilityName, BaseCapability],
        store: ConversationStore,
        *,
        max_loop_iterations: int = 10,
        eager_prerequisites: bool = True,
        prerequisite: PrerequisiteFn = default_prerequisite,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            classifier: Intent classifier.
            capabilities: Dispatch table; must cover every ``CapabilityName``.
            store: Conversation snapshot store.
            max_loop_iterations: Bound on routing decisions per turn.
            eager_prerequisites: Continue toward the requested capability
                after a prerequisite ran in the same turn.
            prerequisite: Prerequisite resolver.

        Raises:
            ValueError: If the dispatch table is incomplete or the bound < 1.
        """
        missing = set(CapabilityName) - set(capabilities)
        if missing:
            raise ValueError(f"missing capabilities: {sorted(missing)}")
        if max_loop_iterations < 1:
            raise ValueError("max_loop_iterations must be >= 1")
        self._classifier = classifier
        self._capabilities = dict(capabilities)
        self._store = store
        self._prerequisite = prerequisite
        self.max_loop_iterations = max_loop_iterations
        self.eager_prerequisites = eager_prerequisites
        # entries vanish once no turn holds or waits on the lock
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )
        logger.info(
            "Orchestrator initialized (max_loop_iterations={}, eager={})",
            max_loop_iterations,
            eager_prerequisites,
        )

    def _lock(self, thread_id: str) -> asyncio.Lock:
        lock = self._locks.get(thread_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[thread_id] = lock
        return lock

    def _apply_extracted_data(
        self, state: ConversationState, classification: IntentClassification
    ) -> ConversationState:
        if classification.intent not in DATA_BEARING_INTENTS:
            return state
        if not classification.extracted_data:
            return state
        try:
            incoming = validate_client_data(classification.extracted_data)
        except ClientDataValidationError as exc:
            logger.warning(
                "Ignoring invalid data on {}: {}", classification.intent, exc
            )
            return state
        return process_client_info_update(
            state, incoming.model_dump(exclude_unset=True)
        )

    async def _run_chain(
        self,
        state: ConversationState,
        classification: IntentClassification,
        message: str,
    ) -> tuple[ConversationState, list[CapabilityName], int, bool]:
        requested = INTENT_TO_CAPABILITY[classification.intent]
        current = requested
        executed: list[CapabilityName] = []
        iterations = 0
        while iterations < self.max_loop_iterations:
            iterations += 1
            prerequisite = self._prerequisite(current, state)
            if prerequisite is not None:
                logger.debug("Redirecting {} -> {}", current, prerequisite)
                current = prerequisite
                continue
            if current in executed:
                # no progress possible without new user input
                return state, executed, iterations, False
            try:
                output = await self._capabilities[current].run(
                    state, classification, message
                )
            except Exception as exc:  # pylint: disable=broad-exception-caught
                log_error_with_context(
                    exc, "run_capability", capability=str(current)
                )
                state = apply_capability_output(
                    state, _fallback_output(str(current), type(exc).__name__)
                )
                return state, executed, iterations, True
            state = apply_capability_output(state, output)
            executed.append(current)
            if (
                current == requested
                or output.awaiting_user
                or not self.eager_prerequisites
            ):
                return state, executed, iterations, False
            current = requested

        logger.warning(
            "Routing bound of {} reached for {}", self.max_loop_iterations, requested
        )
        state = apply_capability_output(
            state, _fallback_output("router", "loop_bound_exceeded")
        )
        return state, executed, iterations, True

    async def handle_message(self, thread_id: str, user_message: str) -> TurnResult:
        """Handle one user message on ``thread_id``.

        Args:
            thread_id: Conversation identifier.
            user_message: Raw user text.

        Returns:
            TurnResult: Joined response text of this turn, the new state
            snapshot and debug metadata.
        """
        async with self._lock(thread_id):
            with performance_timer("handle_message", thread_id=thread_id) as perf:
                state = await self._store.load(thread_id)
                if state is None:
                    logger.info("Starting conversation {}", thread_id)
                    state = ConversationState(thread_id=thread_id)

                try:
                    classification = await self._classifier.classify(
                        user_message, state
                    )
                except Exception as exc:  # pylint: disable=broad-exception-caught
                    log_error_with_context(exc, "classify_intent", thread_id=thread_id)
                    classification = degraded_classification()
                state = state.model_copy(
                    update={
                        "messages": [
                            *state.messages,
                            HumanMessage(content=user_message),
                        ],
                        "last_intent": classification.intent.value,
                        "last_intent_confidence": classification.confidence,
                        "loop_iteration_count": 0,
                    }
                )
                turn_start = len(state.messages)
                state = self._apply_extracted_data(state, classification)
                state, executed, iterations, fallback = await self._run_chain(
                    state, classification, user_message
                )
                state = state.model_copy(
                    update={
                        "sequence": state.sequence + 1,
                        "loop_iteration_count": iterations,
                    }
                )
                await self._store.save(thread_id, state)
                if not state.is_active:
                    await self._store.archive(thread_id)
                perf["capabilities"] = [str(c) for c in executed]

        response_text = "\n\n".join(
            str(msg.content) for msg in state.messages[turn_start:]
        )
        return TurnResult(
            response_text=response_text,
            updated_state=state,
            debug_metadata=DebugMetadata(
                intent=classification.intent,
                confidence=classification.confidence,
                versions=state.versions,
                capabilities_executed=executed,
                loop_iterations=iterations,
                fallback=fallback,
            ),
        )


def create_orchestrator(
    cfg: PlanMindSettings | None = None,
    *,
    store: ConversationStore | None = None,
    vector_store: VectorStore | None = None,
    price_service: PriceService | None = None,
) -> Orchestrator:
    """Wire an orchestrator with the LangChain and Qdrant adapters.

    Args:
        cfg: Settings; defaults to the module-level ``settings``.
        store: Conversation store; defaults to an in-memory LangGraph store.
        vector_store: Vector store; defaults to Qdrant from settings.
        price_service: Optional ERP price service.

    Returns:
        Orchestrator: Ready-to-use orchestrator.
    """
    cfg = cfg or settings
    setup_logging(cfg.log_level, str(cfg.log_file) if cfg.log_file else None)
    completion = RetryingCompletionService(
        LangChainCompletionService(build_chat_model(cfg)),
        policy=RetryPolicy.for_llm(cfg),
        corrective_reprompts=cfg.llm.corrective_reprompts,
    )
    search_loop = SearchLoop.from_settings(
        cfg,
        completion=completion,
        embedding=LangChainEmbeddingService(build_embeddings(cfg)),
        vector_store=vector_store or QdrantVectorStore.from_settings(cfg),
    )
    oc = cfg.orchestrator
    return Orchestrator(
        IntentClassifier(
            completion,
            confidence_threshold=oc.intent_confidence_threshold,
            history_window=oc.history_window,
        ),
        build_capabilities(
            search_loop=search_loop,
            completion=completion,
            price_service=price_service,
            history_window=oc.history_window,
            price_policy=RetryPolicy.for_llm(cfg),
        ),
        store or LangGraphConversationStore(),
        max_loop_iterations=oc.max_loop_iterations,
        eager_prerequisites=oc.eager_prerequisites,
    )


__all__ = [
    "DATA_BEARING_INTENTS",
    "FALLBACK_RESPONSE",
    "Orchestrator",
    "create_orchestrator",
    "default_prerequisite",
]
