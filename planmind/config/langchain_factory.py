"""LangChain model factories built from the unified settings.

The orchestrator and retrieval loop talk to abstract completion and embedding
services. The bundled adapters wrap LangChain runnables, so this module turns
the settings into configured `ChatOpenAI` / `OpenAIEmbeddings` instances.
"""

from __future__ import annotations

from langchain_openai import ChatOpenAI, OpenAIEmbeddings
from pydantic import SecretStr

from planmind.config.settings import PlanMindSettings


def build_chat_model(cfg: PlanMindSettings) -> ChatOpenAI:
    """Build a LangChain chat model for classification, grading and rewriting.

    Retries are disabled on the client itself; the retrying completion service
    owns the backoff policy so attempts are counted in one place.

    Args:
        cfg: Loaded application settings.

    Returns:
        A configured `ChatOpenAI` runnable.

    Raises:
        ValueError: If no model name is configured.
    """
    if not cfg.llm.model:
        raise ValueError("No model name configured for LangChain model")
    return ChatOpenAI(
        model=cfg.llm.model,
        api_key=cfg.llm.api_key or SecretStr("not-needed"),
        base_url=cfg.llm.base_url,
        timeout=float(cfg.llm.request_timeout_seconds),
        max_retries=0,
        temperature=float(cfg.llm.temperature),
    )


def build_embeddings(cfg: PlanMindSettings) -> OpenAIEmbeddings:
    """Build a LangChain embeddings client from settings."""
    return OpenAIEmbeddings(
        model=cfg.embedding.model_name,
        api_key=cfg.llm.api_key or SecretStr("not-needed"),
        base_url=cfg.llm.base_url,
        timeout=float(cfg.embedding.request_timeout_seconds),
        dimensions=cfg.embedding.dimension,
        max_retries=0,
    )


__all__ = ["build_chat_model", "build_embeddings"]
