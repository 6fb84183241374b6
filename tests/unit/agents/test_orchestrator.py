"""Unit tests for turn handling, prerequisite routing and persistence."""

from __future__ import annotations

import asyncio
import gc
import re
from unittest.mock import AsyncMock, Mock

import pytest

from planmind.agents.capabilities import BaseCapability, build_capabilities
from planmind.agents.capabilities.conversation import STATIC_REPLY
from planmind.agents.intent import FALLBACK_CONFIDENCE, IntentClassifier
from planmind.agents.models import (
    CapabilityName,
    Intent,
    IntentClassification,
    ScenarioChange,
)
from planmind.agents.orchestrator import (
    FALLBACK_RESPONSE,
    Orchestrator,
    create_orchestrator,
    default_prerequisite,
)
from planmind.config.settings import PlanMindSettings
from planmind.agents.registry.llm_client import (
    LangChainCompletionService,
    RetryingCompletionService,
)
from planmind.persistence.conversation_store import LangGraphConversationStore
from planmind.retrieval.grading import GradedItem, GradingResponse, RelevanceGrader
from planmind.retrieval.multi_query import MultiQueryRetriever
from planmind.retrieval.query_generation import QueryGenerator
from planmind.retrieval.rewrite import QueryRewriter
from planmind.retrieval.search_loop import SearchLoop
from planmind.state.models import ClientInfo, ConversationState, Recommendation
from planmind.utils.retry import RetryPolicy
from tests.fakes import FakeCompletion, FakeSearchBackend, make_doc

pytestmark = pytest.mark.unit

_ID_RE = re.compile(r"\[id=(\S+)\]")


class _ScriptedClassifier:
    """Classifier stub returning queued verdicts in order."""

    def __init__(self, *verdicts: IntentClassification):
        """Queue the verdicts to return."""
        self._verdicts = list(verdicts)
        self.messages: list[str] = []

    async def classify(
        self, message: str, state: ConversationState
    ) -> IntentClassification:
        """Pop the next verdict, yielding once to interleave concurrent turns."""
        await asyncio.sleep(0)
        self.messages.append(message)
        return self._verdicts.pop(0)


def _verdict(intent: Intent, **kwargs) -> IntentClassification:
    return IntentClassification(
        intent=intent, confidence=0.9, raw_intent=intent, **kwargs
    )


def _grade_all(prompt: str) -> GradingResponse:
    return GradingResponse(
        results=[
            GradedItem(document_id=doc_id, grade="relevant")
            for doc_id in _ID_RE.findall(prompt)
        ]
    )


def _search_loop() -> SearchLoop:
    backend = FakeSearchBackend(
        lambda text: [
            make_doc(f"d{i}", plan_id=f"plan-{i}", operator=f"Operator {i % 2}")
            for i in range(5)
        ]
    )
    return SearchLoop(
        QueryGenerator(),
        MultiQueryRetriever(backend, backend, policy=RetryPolicy(max_retries=0)),
        RelevanceGrader(FakeCompletion({GradingResponse: _grade_all})),
        QueryRewriter(),
    )


def _orchestrator(
    *verdicts: IntentClassification, **kwargs
) -> tuple[Orchestrator, LangGraphConversationStore]:
    store = LangGraphConversationStore()
    orchestrator = Orchestrator(
        _ScriptedClassifier(*verdicts),
        build_capabilities(search_loop=_search_loop()),
        store,
        **kwargs,
    )
    return orchestrator, store


PROFILE_DATA = {"age": 34, "city": "Recife", "budget": 600}


class TestTurnHandling:
    """A turn classifies, routes, applies and persists."""

    @pytest.mark.asyncio
    async def test_first_message_creates_and_saves_state(self):
        orchestrator, store = _orchestrator(
            _verdict(Intent.PROVIDE_DATA, extracted_data=PROFILE_DATA)
        )

        result = await orchestrator.handle_message("t1", "I'm 34, Recife, 600")

        state = result.updated_state
        assert state.sequence == 1
        assert state.client_info.age == 34
        assert state.client_info_version == 1
        assert [m.type for m in state.messages] == ["human", "ai"]
        assert state.last_intent == "provide_data"
        assert result.debug_metadata.capabilities_executed == [
            CapabilityName.UPDATE_CLIENT_INFO
        ]
        saved = await store.load("t1")
        assert saved is not None
        assert saved.sequence == 1

    @pytest.mark.asyncio
    async def test_recommend_resolves_prerequisite_chain(self):
        orchestrator, _ = _orchestrator(
            _verdict(Intent.RECOMMEND, extracted_data=PROFILE_DATA)
        )

        result = await orchestrator.handle_message("t1", "What plan should I get?")

        meta = result.debug_metadata
        assert meta.capabilities_executed == [
            CapabilityName.SEARCH_PLANS,
            CapabilityName.ANALYZE_COMPATIBILITY,
            CapabilityName.GENERATE_RECOMMENDATION,
        ]
        assert meta.fallback is False
        assert meta.loop_iterations <= orchestrator.max_loop_iterations
        state = result.updated_state
        assert state.versions == {
            "client_info": 1,
            "search_results": 1,
            "analysis": 1,
            "recommendation": 1,
        }
        assert state.recommendation is not None
        # one assistant message per executed capability
        assert [m.type for m in state.messages] == ["human", "ai", "ai", "ai"]
        assert state.recommendation.markdown in result.response_text

    @pytest.mark.asyncio
    async def test_missing_profile_stops_at_data_collection(self):
        orchestrator, _ = _orchestrator(_verdict(Intent.RECOMMEND))

        result = await orchestrator.handle_message("t1", "recommend something")

        assert result.debug_metadata.capabilities_executed == [
            CapabilityName.UPDATE_CLIENT_INFO
        ]
        assert result.updated_state.recommendation is None

    @pytest.mark.asyncio
    async def test_non_eager_runs_only_first_prerequisite(self):
        orchestrator, _ = _orchestrator(
            _verdict(Intent.RECOMMEND, extracted_data=PROFILE_DATA),
            eager_prerequisites=False,
        )

        result = await orchestrator.handle_message("t1", "recommend")

        assert result.debug_metadata.capabilities_executed == [
            CapabilityName.SEARCH_PLANS
        ]

    @pytest.mark.asyncio
    async def test_profile_change_invalidates_previous_results(self):
        orchestrator, _ = _orchestrator(
            _verdict(Intent.SEARCH_PLANS, extracted_data=PROFILE_DATA),
            _verdict(Intent.MODIFY_DATA, extracted_data={"age": 35}),
        )
        first = await orchestrator.handle_message("t1", "find plans")
        assert first.updated_state.has_search_results

        second = await orchestrator.handle_message("t1", "actually I'm 35")

        state = second.updated_state
        assert state.sequence == 2
        assert state.client_info_version == 2
        assert state.search_results == []
        assert state.search_metadata is None
        assert state.search_results_version == 0

    @pytest.mark.asyncio
    async def test_fresh_results_are_reused(self):
        orchestrator, _ = _orchestrator(
            _verdict(Intent.SEARCH_PLANS, extracted_data=PROFILE_DATA),
            _verdict(Intent.ANALYZE),
        )
        await orchestrator.handle_message("t1", "find plans")

        result = await orchestrator.handle_message("t1", "compare them")

        assert result.debug_metadata.capabilities_executed == [
            CapabilityName.ANALYZE_COMPATIBILITY
        ]


class TestLoopBound:
    """Routing never exceeds the iteration bound."""

    @pytest.mark.asyncio
    async def test_cyclic_prerequisites_hit_fallback(self):
        def cyclic(capability, state):
            if capability == CapabilityName.ANALYZE_COMPATIBILITY:
                return CapabilityName.SEARCH_PLANS
            return CapabilityName.ANALYZE_COMPATIBILITY

        orchestrator, _ = _orchestrator(
            _verdict(Intent.ANALYZE), max_loop_iterations=4, prerequisite=cyclic
        )

        result = await orchestrator.handle_message("t1", "compare")

        meta = result.debug_metadata
        assert meta.fallback is True
        assert meta.loop_iterations == 4
        assert meta.capabilities_executed == []
        assert result.response_text == FALLBACK_RESPONSE
        errors = result.updated_state.errors
        assert errors[-1].capability == "router"
        assert errors[-1].message == "loop_bound_exceeded"
        assert result.updated_state.loop_iteration_count == 4

    def test_invalid_configuration_rejected(self):
        table = build_capabilities(search_loop=_search_loop())
        with pytest.raises(ValueError):
            Orchestrator(
                _ScriptedClassifier(),
                table,
                LangGraphConversationStore(),
                max_loop_iterations=0,
            )
        del table[CapabilityName.SIMULATE_SCENARIO]
        with pytest.raises(ValueError, match="missing capabilities"):
            Orchestrator(_ScriptedClassifier(), table, LangGraphConversationStore())


class TestLifecycle:
    """Simulation, finalization and per-thread serialization."""

    @pytest.mark.asyncio
    async def test_simulation_does_not_commit(self):
        orchestrator, _ = _orchestrator(
            _verdict(Intent.SEARCH_PLANS, extracted_data=PROFILE_DATA),
            _verdict(
                Intent.SIMULATE_SCENARIO,
                scenario_change=ScenarioChange(type="change_budget", budget=900),
            ),
        )
        before = (await orchestrator.handle_message("t1", "find plans")).updated_state

        result = await orchestrator.handle_message("t1", "what if I paid 900?")

        after = result.updated_state
        assert after.client_info == before.client_info
        assert after.versions == before.versions
        assert after.search_results == before.search_results
        assert "plan search" in result.response_text

    @pytest.mark.asyncio
    async def test_finalize_archives_conversation(self):
        orchestrator, store = _orchestrator(
            _verdict(Intent.PROVIDE_DATA, extracted_data=PROFILE_DATA),
            _verdict(Intent.FINALIZE),
        )
        await orchestrator.handle_message("t1", "I'm 34")

        result = await orchestrator.handle_message("t1", "thanks, bye")

        assert result.updated_state.is_active is False
        assert await store.load("t1") is None
        archived = await store.history("t1", archived=True)
        assert [s.sequence for s in archived] == [1, 2]

    @pytest.mark.asyncio
    async def test_concurrent_turns_on_one_thread_are_serialized(self):
        orchestrator, store = _orchestrator(
            _verdict(Intent.CHAT), _verdict(Intent.CHAT)
        )

        await asyncio.gather(
            orchestrator.handle_message("t1", "hello"),
            orchestrator.handle_message("t1", "anyone there?"),
        )

        history = await store.history("t1")
        assert [s.sequence for s in history] == [1, 2]
        assert len(history[-1].messages) == 4


class _BrokenCapability(BaseCapability):
    """Capability failing with an unexpected error."""

    name = CapabilityName.RESPOND_TO_USER

    async def run(self, state, classification, message):
        raise RuntimeError("boom")


class _BrokenClassifier:
    """Classifier failing with an unexpected error."""

    async def classify(self, message, state):
        raise RuntimeError("classifier exploded")


class TestDegradedTurns:
    """Unexpected failures still produce a reply and a saved snapshot."""

    @pytest.mark.asyncio
    async def test_rejected_model_request_degrades_to_static_chat(self):
        llm = Mock()
        llm.ainvoke = AsyncMock(
            side_effect=ValueError("This model's maximum context length is exceeded")
        )
        completion = RetryingCompletionService(
            LangChainCompletionService(llm), policy=RetryPolicy(max_retries=0)
        )
        store = LangGraphConversationStore()
        orchestrator = Orchestrator(
            IntentClassifier(completion),
            build_capabilities(search_loop=_search_loop(), completion=completion),
            store,
        )

        result = await orchestrator.handle_message("t1", "hello")

        assert result.debug_metadata.intent == Intent.CHAT
        assert result.debug_metadata.confidence == pytest.approx(FALLBACK_CONFIDENCE)
        assert result.response_text == STATIC_REPLY
        errors = result.updated_state.errors
        assert [(e.capability, e.message) for e in errors] == [
            ("respond_to_user", "ProviderError")
        ]
        saved = await store.load("t1")
        assert saved is not None
        assert [m.type for m in saved.messages] == ["human", "ai"]

    @pytest.mark.asyncio
    async def test_capability_crash_returns_fallback_and_saves(self):
        store = LangGraphConversationStore()
        table = build_capabilities(search_loop=_search_loop())
        table[CapabilityName.RESPOND_TO_USER] = _BrokenCapability()
        orchestrator = Orchestrator(
            _ScriptedClassifier(_verdict(Intent.CHAT)), table, store
        )

        result = await orchestrator.handle_message("t1", "hello")

        assert result.response_text == FALLBACK_RESPONSE
        assert result.debug_metadata.fallback is True
        assert result.debug_metadata.capabilities_executed == []
        error = result.updated_state.errors[-1]
        assert (error.capability, error.message) == ("respond_to_user", "RuntimeError")
        saved = await store.load("t1")
        assert saved is not None
        assert saved.sequence == 1
        assert [m.type for m in saved.messages] == ["human", "ai"]

    @pytest.mark.asyncio
    async def test_classifier_crash_degrades_to_chat(self):
        store = LangGraphConversationStore()
        orchestrator = Orchestrator(
            _BrokenClassifier(), build_capabilities(search_loop=_search_loop()), store
        )

        result = await orchestrator.handle_message("t1", "hello")

        assert result.debug_metadata.intent == Intent.CHAT
        assert result.debug_metadata.capabilities_executed == [
            CapabilityName.RESPOND_TO_USER
        ]
        assert result.response_text == STATIC_REPLY
        assert await store.load("t1") is not None

    @pytest.mark.asyncio
    async def test_blank_model_recommendation_uses_template(self):
        blank = Recommendation.model_construct(markdown="")
        orchestrator = Orchestrator(
            _ScriptedClassifier(
                _verdict(Intent.RECOMMEND, extracted_data=PROFILE_DATA)
            ),
            build_capabilities(
                search_loop=_search_loop(),
                completion=FakeCompletion({Recommendation: blank}),
            ),
            LangGraphConversationStore(),
        )

        result = await orchestrator.handle_message("t1", "which plan?")

        state = result.updated_state
        assert state.recommendation is not None
        assert state.recommendation.markdown.startswith("## Recommendation")
        assert state.recommendation.markdown in result.response_text
        assert state.errors[-1].message == "blank_recommendation"


@pytest.mark.asyncio
async def test_thread_locks_are_released_after_turns():
    orchestrator, _ = _orchestrator(_verdict(Intent.CHAT), _verdict(Intent.FINALIZE))
    await orchestrator.handle_message("t1", "hello")
    await orchestrator.handle_message("t1", "bye")
    gc.collect()
    assert "t1" not in orchestrator._locks


def test_default_prerequisites(client_info):
    empty = ConversationState(thread_id="t")
    assert (
        default_prerequisite(CapabilityName.SEARCH_PLANS, empty)
        == CapabilityName.UPDATE_CLIENT_INFO
    )
    assert (
        default_prerequisite(CapabilityName.FETCH_PRICES, empty)
        == CapabilityName.SEARCH_PLANS
    )
    assert (
        default_prerequisite(CapabilityName.GENERATE_RECOMMENDATION, empty)
        == CapabilityName.ANALYZE_COMPATIBILITY
    )
    ready = ConversationState(thread_id="t", client_info=client_info)
    assert default_prerequisite(CapabilityName.SEARCH_PLANS, ready) is None
    assert default_prerequisite(CapabilityName.RESPOND_TO_USER, empty) is None
    assert ClientInfo().has_minimum_for_search() is False


def test_create_orchestrator_configures_logging(monkeypatch, tmp_path):
    calls = []
    monkeypatch.setattr(
        "planmind.agents.orchestrator.setup_logging",
        lambda level, file: calls.append((level, file)),
    )
    log_file = tmp_path / "planmind.log"
    cfg = PlanMindSettings(
        log_level="DEBUG",
        log_file=log_file,
        llm={"api_key": "sk-test"},
        orchestrator={"max_loop_iterations": 6},
    )

    orchestrator = create_orchestrator(cfg, vector_store=FakeSearchBackend())

    assert calls == [("DEBUG", str(log_file))]
    assert orchestrator.max_loop_iterations == 6
