"""Versioned cache invalidation across the conversation's derived data.

Dependency chain::

    client_info -> search_results -> analysis -> recommendation

Each derived value is stamped with the version of the data it was computed
from. Resetting a value also resets its version to ``0``, so a capability is
stale exactly when its own version is behind its upstream version.

``apply_invalidation`` is the only function that writes a value/version pair.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Literal

from loguru import logger

from planmind.state.merge import merge_client_info
from planmind.state.models import ClientInfo, ConversationState
from planmind.utils.exceptions import CacheConsistencyError

CacheField = Literal[
    "client_info", "search_results", "analysis", "recommendation", "prices"
]

INVALIDATION_RULES: dict[str, tuple[str, ...]] = {
    "client_info": ("search_results", "analysis", "recommendation"),
    "search_results": ("analysis", "recommendation"),
    "analysis": ("recommendation",),
    "prices": (),
}

# field -> data it is computed from
UPSTREAM: dict[str, str] = {
    "search_results": "client_info",
    "analysis": "search_results",
    "recommendation": "analysis",
}

_VERSION_ATTR: dict[str, str] = {
    "client_info": "client_info_version",
    "search_results": "search_results_version",
    "analysis": "analysis_version",
    "recommendation": "recommendation_version",
}

_VALUE_ATTR: dict[str, str] = {
    "client_info": "client_info",
    "search_results": "search_results",
    "analysis": "compatibility_analysis",
    "recommendation": "recommendation",
    "prices": "prices",
}

# capability -> field whose freshness it produces
CAPABILITY_OUTPUTS: dict[str, str] = {
    "search_plans": "search_results",
    "analyze_compatibility": "analysis",
    "generate_recommendation": "recommendation",
}

_RESET_VALUES: dict[str, dict[str, Any]] = {
    "search_results": {"search_results": [], "search_metadata": None},
    "analysis": {"compatibility_analysis": None},
    "recommendation": {"recommendation": None},
}


def get_invalidation_updates(changed_field: str) -> dict[str, Any]:
    """Return the reset patch for every field depending on ``changed_field``.

    Values and versions are reset together.
    """
    updates: dict[str, Any] = {}
    for field in INVALIDATION_RULES.get(changed_field, ()):
        updates.update(_RESET_VALUES[field])
        updates[_VERSION_ATTR[field]] = 0
    return updates


def _is_present(state: ConversationState, field: str) -> bool:
    if field == "search_results":
        return state.search_metadata is not None
    return getattr(state, _VALUE_ATTR[field]) is not None


def verify_consistency(state: ConversationState) -> None:
    """Check the version/value invariants of a state snapshot.

    Raises:
        CacheConsistencyError: If an absent value carries a non-zero version, a
            present value carries version 0, or a derived version is ahead of
            its upstream version.
    """
    for field, upstream in UPSTREAM.items():
        version = getattr(state, _VERSION_ATTR[field])
        present = _is_present(state, field)
        if not present and version != 0:
            raise CacheConsistencyError(
                f"{field} is reset but carries version {version}"
            )
        if present and version == 0:
            raise CacheConsistencyError(f"{field} is present but carries version 0")
        upstream_version = getattr(state, _VERSION_ATTR[upstream])
        if version > upstream_version:
            raise CacheConsistencyError(
                f"{field} version {version} is ahead of {upstream} "
                f"version {upstream_version}"
            )


def apply_invalidation(
    state: ConversationState,
    changed_field: CacheField,
    value: Any,
    **extra: Any,
) -> ConversationState:
    """Write a new value for ``changed_field`` and invalidate its dependents.

    Args:
        state: Current snapshot.
        changed_field: Field being written.
        value: New value for the field.
        **extra: Companion values written in the same patch
            (``search_metadata`` for search results).

    Returns:
        ConversationState: New snapshot with the value stamped and every
        dependent value and version reset in the same transition.

    Raises:
        CacheConsistencyError: If the resulting snapshot breaks an invariant.
    """
    update: dict[str, Any] = {_VALUE_ATTR[changed_field]: value, **extra}
    if changed_field == "client_info":
        update["client_info_version"] = state.client_info_version + 1
    elif changed_field in UPSTREAM:
        upstream_attr = _VERSION_ATTR[UPSTREAM[changed_field]]
        update[_VERSION_ATTR[changed_field]] = getattr(state, upstream_attr)
    update.update(get_invalidation_updates(changed_field))

    new_state = state.model_copy(update=update)
    verify_consistency(new_state)
    logger.debug(
        "Applied {} update; invalidated {}; versions={}",
        changed_field,
        list(INVALIDATION_RULES.get(changed_field, ())),
        new_state.versions,
    )
    return new_state


def process_client_info_update(
    state: ConversationState, new_data: ClientInfo | Mapping[str, Any]
) -> ConversationState:
    """Merge new client data and invalidate downstream caches on change.

    The merged profile is compared with the current one in serialized form.
    When they differ, ``client_info_version`` increases by exactly one and all
    dependent values and versions reset in the same transition; otherwise the
    state is returned unchanged.

    Raises:
        pydantic.ValidationError: If ``new_data`` is not a valid profile.
    """
    merged = merge_client_info(state.client_info, new_data)
    if merged.model_dump_json() == state.client_info.model_dump_json():
        logger.debug("Client info unchanged; caches kept")
        return state
    logger.info(
        "Client info changed (v{} -> v{}); invalidating downstream caches",
        state.client_info_version,
        state.client_info_version + 1,
    )
    return apply_invalidation(state, "client_info", merged)


def is_stale(state: ConversationState, field: str) -> bool:
    """True when ``field`` was computed from an older upstream version."""
    upstream = UPSTREAM.get(field)
    if upstream is None:
        return False
    return getattr(state, _VERSION_ATTR[field]) < getattr(
        state, _VERSION_ATTR[upstream]
    )


def get_stale_capabilities(state: ConversationState) -> list[str]:
    """Return the capabilities whose output is behind its upstream data.

    Pure function of the version counters.
    """
    return [
        capability
        for capability, field in CAPABILITY_OUTPUTS.items()
        if is_stale(state, field)
    ]


__all__ = [
    "CAPABILITY_OUTPUTS",
    "INVALIDATION_RULES",
    "UPSTREAM",
    "CacheField",
    "apply_invalidation",
    "get_invalidation_updates",
    "get_stale_capabilities",
    "is_stale",
    "process_client_info_update",
    "verify_consistency",
]
