"""Tests for typing presence: debounce, TTL and the input-box driver."""

from __future__ import annotations

from datetime import timedelta

import pytest

from eventsocial.config import SocialSettings
from eventsocial.domain.models import TypingScope, TypingUser
from eventsocial.repos.memory import InMemoryBroadcastStore
from eventsocial.services.typing import (
    TypingHandler,
    TypingPresence,
    format_typing_text,
    scope_path,
)


class CountingBroadcast(InMemoryBroadcastStore):
    def __init__(self) -> None:
        super().__init__()
        self.writes = 0

    def set(self, path, value) -> None:
        self.writes += 1
        super().set(path, value)


@pytest.fixture()
def broadcast():
    return CountingBroadcast()


@pytest.fixture()
def presence(broadcast, clock):
    return TypingPresence(broadcast, clock)


def test_typing_user_is_visible_to_others(presence):
    presence.set_group_typing("ev1", "alice", "Alice", True)
    status = presence.status(TypingScope.GROUP, "ev1", viewer_id="bob")
    assert status.is_typing
    assert status.users == [TypingUser(user_id="alice", user_name="Alice")]


def test_viewer_does_not_see_themselves(presence):
    presence.set_group_typing("ev1", "alice", "Alice", True)
    assert presence.active_typers(TypingScope.GROUP, "ev1", viewer_id="alice") == []


def test_scopes_are_separate(presence):
    presence.set_dm_typing("conv1", "alice", "Alice", True)
    assert presence.active_typers(TypingScope.GROUP, "conv1") == []
    assert len(presence.active_typers(TypingScope.DM, "conv1")) == 1


def test_lease_invisible_after_ttl(presence, clock):
    presence.set_group_typing("ev1", "alice", "Alice", True)
    clock.advance(seconds=4)
    assert len(presence.active_typers(TypingScope.GROUP, "ev1")) == 1
    clock.advance(seconds=1)
    assert presence.active_typers(TypingScope.GROUP, "ev1") == []


def test_debounce_limits_writes(presence, broadcast, clock):
    for _ in range(10):
        presence.set_group_typing("ev1", "alice", "Alice", True)
        clock.advance(milliseconds=150)
    assert broadcast.writes == 1

    clock.advance(seconds=1)
    presence.set_group_typing("ev1", "alice", "Alice", True)
    assert broadcast.writes == 2


def test_clear_removes_indicator(presence, broadcast):
    presence.set_group_typing("ev1", "alice", "Alice", True)
    presence.set_group_typing("ev1", "alice", "Alice", False)
    assert broadcast.children(scope_path(TypingScope.GROUP, "ev1")) == {}


def test_clear_does_not_reset_debounce(presence, broadcast, clock):
    presence.set_group_typing("ev1", "alice", "Alice", True)
    clock.advance(milliseconds=300)
    presence.set_group_typing("ev1", "alice", "Alice", False)
    clock.advance(milliseconds=300)
    presence.set_group_typing("ev1", "alice", "Alice", True)
    assert broadcast.writes == 1

    clock.advance(seconds=2)
    presence.set_group_typing("ev1", "alice", "Alice", True)
    assert broadcast.writes == 2


def test_debounce_entries_are_pruned(presence, clock):
    presence.set_group_typing("ev1", "alice", "Alice", True)
    presence.set_dm_typing("conv1", "alice", "Alice", True)
    clock.advance(seconds=3)
    presence.set_group_typing("ev2", "alice", "Alice", True)
    assert list(presence._last_emit) == [(TypingScope.GROUP, "ev2", "alice")]


def test_errors_are_swallowed(presence, broadcast):
    broadcast.available = False
    presence.set_group_typing("ev1", "alice", "Alice", True)
    presence.set_group_typing("ev1", "alice", "Alice", False)
    assert presence.active_typers(TypingScope.GROUP, "ev1") == []
    subscription = presence.subscribe(TypingScope.GROUP, "ev1")
    assert not subscription.status().is_typing


def test_malformed_indicator_is_ignored(presence, broadcast):
    broadcast.set(f"{scope_path(TypingScope.GROUP, 'ev1')}/ghost", {"userName": "Ghost"})
    assert presence.active_typers(TypingScope.GROUP, "ev1") == []


# ---------------------------------------------------------------------------
# Subscription
# ---------------------------------------------------------------------------


def test_subscription_pushes_changes_and_reapplies_ttl(presence, clock):
    seen = []
    subscription = presence.subscribe(TypingScope.DM, "conv1", viewer_id="bob")
    subscription.on_change(lambda status: seen.append([u.user_id for u in status.users]))

    presence.set_dm_typing("conv1", "alice", "Alice", True)
    assert seen == [["alice"]]
    assert subscription.status().is_typing

    # No clear ever arrives; the lease simply ages out.
    clock.advance(seconds=6)
    assert not subscription.status().is_typing

    subscription.close()
    presence.set_dm_typing("conv1", "alice", "Alice", False)
    assert seen == [["alice"]]


# ---------------------------------------------------------------------------
# TypingHandler
# ---------------------------------------------------------------------------


def _handler(presence) -> TypingHandler:
    return TypingHandler(presence, TypingScope.GROUP, "ev1", "alice", "Alice", idle=timedelta(seconds=2))


def test_handler_emits_on_text_and_clears_on_send(presence):
    handler = _handler(presence)
    handler.on_change_text("hel")
    assert handler.is_active
    assert len(presence.active_typers(TypingScope.GROUP, "ev1")) == 1

    handler.on_send()
    assert not handler.is_active
    assert presence.active_typers(TypingScope.GROUP, "ev1") == []


def test_handler_clears_on_blur_and_empty_text(presence):
    handler = _handler(presence)
    handler.on_change_text("hi")
    handler.on_blur()
    assert presence.active_typers(TypingScope.GROUP, "ev1") == []

    handler.on_change_text("hi")
    handler.on_change_text("")
    assert presence.active_typers(TypingScope.GROUP, "ev1") == []


def test_handler_clears_after_idle(presence, clock):
    handler = _handler(presence)
    handler.on_change_text("h")
    clock.advance(seconds=1)
    handler.check_idle()
    assert handler.is_active

    clock.advance(seconds=1)
    handler.check_idle()
    assert not handler.is_active
    assert presence.active_typers(TypingScope.GROUP, "ev1") == []


def test_typing_right_after_send_stays_debounced(presence, broadcast):
    handler = _handler(presence)
    handler.on_change_text("a")
    handler.on_send()
    handler.on_change_text("b")
    assert broadcast.writes == 1
    assert handler.is_active


def test_handler_idle_comes_from_settings(broadcast, clock):
    settings = SocialSettings(typing_idle_seconds=4)
    presence = TypingPresence.from_settings(broadcast, settings, clock)
    handler = presence.handler(TypingScope.DM, "conv1", "alice", "Alice")
    handler.on_change_text("h")
    clock.advance(seconds=3)
    handler.check_idle()
    assert handler.is_active
    clock.advance(seconds=1)
    handler.check_idle()
    assert not handler.is_active


# ---------------------------------------------------------------------------
# format_typing_text
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "names, expected",
    [
        ([], ""),
        (["Alice"], "Alice is typing..."),
        (["Alice", "Bob"], "Alice and Bob are typing..."),
        (["Alice", "Bob", "Cy", "Di"], "Alice and 3 others are typing..."),
    ],
)
def test_format_typing_text(names, expected):
    users = [TypingUser(user_id=n.lower(), user_name=n) for n in names]
    assert format_typing_text(users) == expected
