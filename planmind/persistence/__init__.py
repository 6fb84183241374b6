"""Conversation state persistence."""

from .conversation_store import LangGraphConversationStore

__all__ = ["LangGraphConversationStore"]
