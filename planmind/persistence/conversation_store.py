"""Conversation snapshots on a LangGraph ``BaseStore``.

Layout:

- Namespace ``("conversations", thread_id)`` holds one item per snapshot,
  keyed by the zero-padded sequence number, plus a ``head`` item pointing at
  the newest sequence.
- Finalized threads move to ``("archived_conversations", thread_id)``.

Snapshots are immutable: saving an existing sequence number is rejected.
"""

from __future__ import annotations

from langgraph.store.base import BaseStore
from langgraph.store.memory import InMemoryStore
from loguru import logger

from planmind.state.models import ConversationState

ACTIVE_NAMESPACE = "conversations"
ARCHIVE_NAMESPACE = "archived_conversations"
HEAD_KEY = "head"

# Upper bound on snapshots listed per thread.
MAX_SNAPSHOTS = 10_000


def snapshot_key(sequence: int) -> str:
    return f"{sequence:08d}"


class SnapshotConflictError(ValueError):
    """Raised when a snapshot with the same sequence number already exists."""


class LangGraphConversationStore:
    """``ConversationStore`` implementation backed by a LangGraph store."""

    def __init__(self, store: BaseStore | None = None) -> None:
        self._store = store or InMemoryStore()

    async def load(self, thread_id: str) -> ConversationState | None:
        namespace = (ACTIVE_NAMESPACE, thread_id)
        head = await self._store.aget(namespace, HEAD_KEY)
        if head is None:
            return None
        item = await self._store.aget(namespace, snapshot_key(head.value["sequence"]))
        if item is None:
            logger.warning("Head of thread points at a missing snapshot")
            return None
        return ConversationState.model_validate(item.value)

    async def save(self, thread_id: str, state: ConversationState) -> None:
        if state.thread_id != thread_id:
            raise ValueError("state belongs to a different thread")
        namespace = (ACTIVE_NAMESPACE, thread_id)
        key = snapshot_key(state.sequence)
        if await self._store.aget(namespace, key) is not None:
            raise SnapshotConflictError(
                f"snapshot {state.sequence} already exists for thread"
            )
        await self._store.aput(namespace, key, state.model_dump(mode="json"))
        await self._store.aput(namespace, HEAD_KEY, {"sequence": state.sequence})
        logger.debug("Saved snapshot {} (versions={})", state.sequence, state.versions)

    async def history(
        self, thread_id: str, *, archived: bool = False
    ) -> list[ConversationState]:
        """Return every snapshot of a thread, oldest first."""
        namespace = (ARCHIVE_NAMESPACE if archived else ACTIVE_NAMESPACE, thread_id)
        items = await self._store.asearch(namespace, limit=MAX_SNAPSHOTS)
        snapshots = sorted(
            (item for item in items if item.key != HEAD_KEY), key=lambda i: i.key
        )
        return [ConversationState.model_validate(item.value) for item in snapshots]

    async def archive(self, thread_id: str) -> None:
        active = (ACTIVE_NAMESPACE, thread_id)
        archive = (ARCHIVE_NAMESPACE, thread_id)
        items = await self._store.asearch(active, limit=MAX_SNAPSHOTS)
        archived = 0
        for item in items:
            if item.key != HEAD_KEY:
                await self._store.aput(archive, item.key, item.value)
                archived += 1
            await self._store.adelete(active, item.key)
        logger.info("Archived conversation with {} snapshot(s)", archived)


__all__ = [
    "LangGraphConversationStore",
    "SnapshotConflictError",
    "snapshot_key",
]
