"""Unit tests for the nested settings model and its env mapping."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from planmind.config.langchain_factory import build_embeddings
from planmind.config.settings import PlanMindSettings
from planmind.utils.retry import RetryPolicy

pytestmark = pytest.mark.unit


class TestDefaults:
    """Defaults match the tuned engine constants."""

    def test_retrieval_defaults(self):
        """Fusion, grading and rewrite constants."""
        rc = PlanMindSettings().retrieval
        assert rc.fusion_k == 60
        assert rc.fused_top_k == 15
        assert rc.top_k_per_query == 10
        assert rc.boost_factor == pytest.approx(0.1)
        assert rc.multi_query_boost is True
        assert rc.grading_batch_size == 5
        assert rc.min_relevant_docs == 3
        assert rc.max_rewrite_attempts == 2

    def test_orchestrator_defaults(self):
        """Loop bound and confidence threshold."""
        oc = PlanMindSettings().orchestrator
        assert oc.max_loop_iterations == 10
        assert oc.intent_confidence_threshold == pytest.approx(0.5)
        assert oc.eager_prerequisites is True

    def test_llm_api_key_is_secret(self):
        """API keys never render in plain text."""
        cfg = PlanMindSettings(llm={"api_key": "sk-test"})
        assert "sk-test" not in repr(cfg.llm)
        assert cfg.llm.api_key.get_secret_value() == "sk-test"


class TestEnvironment:
    """Nested env vars use the PLANMIND_ prefix and ``__`` delimiter."""

    def test_nested_override(self, monkeypatch):
        monkeypatch.setenv("PLANMIND_RETRIEVAL__FUSION_K", "30")
        monkeypatch.setenv("PLANMIND_ORCHESTRATOR__MAX_LOOP_ITERATIONS", "4")
        cfg = PlanMindSettings()
        assert cfg.retrieval.fusion_k == 30
        assert cfg.orchestrator.max_loop_iterations == 4

    def test_invalid_value_rejected(self, monkeypatch):
        monkeypatch.setenv("PLANMIND_RETRIEVAL__FUSION_K", "0")
        with pytest.raises(ValidationError):
            PlanMindSettings()

    def test_threshold_out_of_range_rejected(self):
        with pytest.raises(ValidationError):
            PlanMindSettings(orchestrator={"intent_confidence_threshold": 1.5})


def test_retry_policies_follow_settings():
    cfg = PlanMindSettings(
        llm={"max_retries": 4, "request_timeout_seconds": 12},
        embedding={"request_timeout_seconds": 7},
        vector_store={"timeout_seconds": 9},
    )
    llm = RetryPolicy.for_llm(cfg)
    assert llm.max_retries == 4
    assert llm.timeout_seconds == pytest.approx(12)

    retrieval = RetryPolicy.for_retrieval(cfg)
    assert retrieval.max_retries == 4
    assert retrieval.timeout_seconds == pytest.approx(9)


def test_embedding_dimension_reaches_client():
    cfg = PlanMindSettings(embedding={"dimension": 256}, llm={"api_key": "sk-test"})
    assert build_embeddings(cfg).dimensions == 256
