"""Smart merge of partial client profiles.

Scalar fields overwrite when the incoming value is set. Array fields merge
without duplicates: string lists keep first-seen order, dependents are matched
by identity key and merged field by field.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

from planmind.state.models import ClientInfo, Dependent

_LIST_FIELDS = ("dependents", "health_conditions", "preferences")


def dependent_key(dependent: Dependent) -> str:
    """Return the identity key used to match dependents across updates.

    >>> dependent_key(Dependent(name="Maria", relationship="spouse"))
    'name:maria'
    >>> dependent_key(Dependent(age=10, relationship="child"))
    'child:10'
    """
    if dependent.name and dependent.name.strip():
        return f"name:{dependent.name.strip().lower()}"
    age = dependent.age if dependent.age is not None else "unknown"
    return f"{dependent.relationship}:{age}"


def merge_string_lists(existing: Iterable[str], incoming: Iterable[str]) -> list[str]:
    """Ordered union of two string lists, case-insensitive on duplicates."""
    merged: list[str] = []
    seen: set[str] = set()
    for value in [*existing, *incoming]:
        norm = value.strip().lower()
        if not norm or norm in seen:
            continue
        seen.add(norm)
        merged.append(value.strip())
    return merged


def _merge_dependent(current: Dependent, incoming: Dependent) -> Dependent:
    fields = incoming.model_dump(exclude_unset=True, exclude={"health_conditions"})
    update: dict[str, Any] = {k: v for k, v in fields.items() if v is not None}
    update["health_conditions"] = merge_string_lists(
        current.health_conditions, incoming.health_conditions
    )
    return current.model_copy(update=update)


def merge_dependents(
    existing: list[Dependent], incoming: list[Dependent]
) -> list[Dependent]:
    """Merge incoming dependents into the existing list.

    Dependents with the same identity key are merged in place; unknown ones are
    appended. Merging an empty list returns ``existing`` unchanged and applying
    the same ``incoming`` twice yields the same result as applying it once.
    """
    merged = list(existing)
    index = {dependent_key(dep): pos for pos, dep in enumerate(merged)}
    for dep in incoming:
        key = dependent_key(dep)
        pos = index.get(key)
        if pos is None:
            index[key] = len(merged)
            merged.append(dep)
        else:
            merged[pos] = _merge_dependent(merged[pos], dep)
    return merged


def merge_client_info(
    existing: ClientInfo, incoming: ClientInfo | Mapping[str, Any]
) -> ClientInfo:
    """Smart-merge a partial profile into the existing one.

    Args:
        existing: Current profile.
        incoming: New partial data; a mapping is validated as ``ClientInfo``.

    Returns:
        ClientInfo: Merged profile. ``existing`` is returned as-is when nothing
        in ``incoming`` is set.

    Raises:
        pydantic.ValidationError: If a mapping fails profile validation.
    """
    if not isinstance(incoming, ClientInfo):
        incoming = ClientInfo.model_validate(dict(incoming))

    update: dict[str, Any] = {
        field: getattr(incoming, field)
        for field in ClientInfo.model_fields
        if field not in _LIST_FIELDS and getattr(incoming, field) is not None
    }
    if incoming.dependents:
        update["dependents"] = merge_dependents(
            existing.dependents, incoming.dependents
        )
    if incoming.health_conditions:
        update["health_conditions"] = merge_string_lists(
            existing.health_conditions, incoming.health_conditions
        )
    if incoming.preferences:
        update["preferences"] = merge_string_lists(
            existing.preferences, incoming.preferences
        )
    if not update:
        return existing
    return existing.model_copy(update=update)


__all__ = [
    "dependent_key",
    "merge_client_info",
    "merge_dependents",
    "merge_string_lists",
]
