"""Unit tests for conversation snapshots on the LangGraph in-memory store."""

from __future__ import annotations

import pytest
from langchain_core.messages import AIMessage, HumanMessage
from langgraph.store.memory import InMemoryStore

from planmind.persistence.conversation_store import (
    ACTIVE_NAMESPACE,
    LangGraphConversationStore,
    SnapshotConflictError,
    snapshot_key,
)
from planmind.state.models import ClientInfo, ConversationState, StateError

pytestmark = pytest.mark.unit


def _state(thread_id: str, sequence: int, **update) -> ConversationState:
    return ConversationState(thread_id=thread_id, sequence=sequence, **update)


@pytest.mark.asyncio
async def test_unknown_thread_loads_none():
    store = LangGraphConversationStore()
    assert await store.load("missing") is None


@pytest.mark.asyncio
async def test_save_and_load_latest_snapshot():
    store = LangGraphConversationStore()
    await store.save("t1", _state("t1", 1))
    latest = _state(
        "t1",
        2,
        client_info=ClientInfo(age=30, city="Recife"),
        client_info_version=1,
        messages=[HumanMessage(content="hi"), AIMessage(content="hello")],
        errors=[StateError(capability="search_plans", message="TimeoutError")],
    )
    await store.save("t1", latest)

    loaded = await store.load("t1")

    assert loaded is not None
    assert loaded.sequence == 2
    assert loaded.client_info == latest.client_info
    assert loaded.versions == latest.versions
    assert [(m.type, m.content) for m in loaded.messages] == [
        ("human", "hi"),
        ("ai", "hello"),
    ]
    assert loaded.errors[0].capability == "search_plans"


@pytest.mark.asyncio
async def test_snapshots_are_immutable():
    store = LangGraphConversationStore()
    await store.save("t1", _state("t1", 1))
    with pytest.raises(SnapshotConflictError):
        await store.save("t1", _state("t1", 1, last_intent="chat"))


@pytest.mark.asyncio
async def test_thread_mismatch_rejected():
    store = LangGraphConversationStore()
    with pytest.raises(ValueError):
        await store.save("t1", _state("t2", 1))


@pytest.mark.asyncio
async def test_history_is_ordered_and_threads_isolated():
    backing = InMemoryStore()
    store = LangGraphConversationStore(backing)
    for seq in (1, 2, 3):
        await store.save("t1", _state("t1", seq))
    await store.save("t10", _state("t10", 1))

    history = await store.history("t1")

    assert [s.sequence for s in history] == [1, 2, 3]
    assert [s.sequence for s in await store.history("t10")] == [1]
    item = await backing.aget((ACTIVE_NAMESPACE, "t1"), snapshot_key(3))
    assert item is not None
    assert snapshot_key(3) == "00000003"


@pytest.mark.asyncio
async def test_archive_moves_snapshots_out_of_active_namespace():
    store = LangGraphConversationStore()
    await store.save("t1", _state("t1", 1))
    await store.save("t1", _state("t1", 2, is_active=False))

    await store.archive("t1")

    assert await store.load("t1") is None
    assert await store.history("t1") == []
    archived = await store.history("t1", archived=True)
    assert [s.sequence for s in archived] == [1, 2]
    assert archived[-1].is_active is False
