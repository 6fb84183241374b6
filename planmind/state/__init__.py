"""Conversation state, profile merging and versioned cache invalidation."""

from .cache_invalidation import (
    apply_invalidation,
    get_stale_capabilities,
    process_client_info_update,
)
from .models import ClientInfo, ConversationState, Dependent

__all__ = [
    "ClientInfo",
    "ConversationState",
    "Dependent",
    "apply_invalidation",
    "get_stale_capabilities",
    "process_client_info_update",
]
