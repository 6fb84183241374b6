"""Top-level pytest configuration: markers and shared profile fixtures."""

from __future__ import annotations

import pytest

from planmind.state.models import ClientInfo, ConversationState, Dependent


def pytest_configure(config) -> None:
    """Register custom markers for this test suite."""
    config.addinivalue_line(
        "markers", "unit: fast isolated tests with fake collaborators"
    )


@pytest.fixture
def client_info() -> ClientInfo:
    """A profile complete enough to search with."""
    return ClientInfo(
        name="Ana",
        age=34,
        city="Recife",
        state="PE",
        budget=600.0,
        dependents=[Dependent(name="Leo", age=6, relationship="child")],
        health_conditions=["asthma"],
    )


@pytest.fixture
def empty_state() -> ConversationState:
    """A brand-new conversation."""
    return ConversationState(thread_id="t-1")
