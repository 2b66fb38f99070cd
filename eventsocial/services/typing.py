"""Ephemeral "is composing" presence for group chats and private conversations.

Indicators are leases stored at ``typingIndicators/{scope}/{scope_id}/{user_id}``
in the broadcast store. Writers debounce, readers drop anything older than
the TTL, so a clear that never arrives only leaves a stale record that
nobody sees. Nothing here gates anything, and every failure is swallowed.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Callable

import structlog

from eventsocial.config import SocialSettings
from eventsocial.domain.models import (
    Clock,
    TypingIndicator,
    TypingScope,
    TypingStatus,
    TypingUser,
    utcnow,
)
from eventsocial.repos.interfaces import BroadcastStore, Document, StoreUnavailableError
from eventsocial.repos.records import decode

logger = structlog.get_logger(__name__)

ROOT = "typingIndicators"


def scope_path(scope: TypingScope, scope_id: str) -> str:
    return f"{ROOT}/{scope.value}/{scope_id}"


def _fresh_users(
    snapshot: dict[str, Document],
    now: datetime,
    ttl: timedelta,
    viewer_id: str | None,
) -> list[TypingUser]:
    users = []
    for user_id, raw in snapshot.items():
        if user_id == viewer_id:
            continue
        indicator = decode(TypingIndicator, raw)
        if indicator is None or now - indicator.timestamp >= ttl:
            continue
        users.append(TypingUser(user_id=indicator.user_id, user_name=indicator.user_name))
    return users


def format_typing_text(users: list[TypingUser]) -> str:
    if not users:
        return ""
    if len(users) == 1:
        return f"{users[0].user_name} is typing..."
    if len(users) == 2:
        return f"{users[0].user_name} and {users[1].user_name} are typing..."
    return f"{users[0].user_name} and {len(users) - 1} others are typing..."


class TypingSubscription:
    """Live view of one scope's typers.

    The broadcast store pushes snapshots; ``status()`` re-applies the TTL on
    every read so leases expire even when no further change arrives.
    """

    def __init__(self, viewer_id: str | None, ttl: timedelta, clock: Clock) -> None:
        self.viewer_id = viewer_id
        self.ttl = ttl
        self.clock = clock
        self._snapshot: dict[str, Document] = {}
        self._unsubscribe: Callable[[], None] | None = None
        self._listeners: list[Callable[[TypingStatus], None]] = []

    def _on_snapshot(self, snapshot: dict[str, Document]) -> None:
        self._snapshot = snapshot
        status = self.status()
        for listener in list(self._listeners):
            listener(status)

    def on_change(self, listener: Callable[[TypingStatus], None]) -> None:
        self._listeners.append(listener)

    def status(self) -> TypingStatus:
        users = _fresh_users(self._snapshot, self.clock(), self.ttl, self.viewer_id)
        return TypingStatus(is_typing=bool(users), users=users)

    def close(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None


class TypingPresence:
    """One client's typing writer and reader.

    Debounce state is per instance: at most one "typing" write per
    ``debounce`` for each (scope, scope id, user). A clear does not reset it.
    """

    def __init__(
        self,
        broadcast: BroadcastStore,
        clock: Clock = utcnow,
        ttl: timedelta = timedelta(seconds=5),
        debounce: timedelta = timedelta(seconds=2),
        idle: timedelta = timedelta(seconds=2),
    ) -> None:
        self.broadcast = broadcast
        self.clock = clock
        self.ttl = ttl
        self.debounce = debounce
        self.idle = idle
        self._last_emit: dict[tuple[TypingScope, str, str], datetime] = {}

    @classmethod
    def from_settings(cls, broadcast: BroadcastStore, settings: SocialSettings, clock: Clock = utcnow) -> TypingPresence:
        return cls(
            broadcast,
            clock,
            ttl=settings.typing_ttl,
            debounce=settings.typing_debounce,
            idle=settings.typing_idle,
        )

    def _prune(self, now: datetime) -> None:
        """Drop debounce entries that can no longer suppress a write."""
        stale = [key for key, at in self._last_emit.items() if now - at >= self.debounce]
        for key in stale:
            del self._last_emit[key]

    def set_typing(
        self,
        scope: TypingScope,
        scope_id: str,
        user_id: str,
        user_name: str,
        is_typing: bool,
    ) -> None:
        key = (scope, scope_id, user_id)
        path = f"{scope_path(scope, scope_id)}/{user_id}"
        try:
            if is_typing:
                now = self.clock()
                last = self._last_emit.get(key)
                if last is not None and now - last < self.debounce:
                    return
                self._prune(now)
                self._last_emit[key] = now
                indicator = TypingIndicator(
                    scope=scope,
                    scope_id=scope_id,
                    user_id=user_id,
                    user_name=user_name,
                    timestamp=now,
                )
                self.broadcast.set(path, indicator.model_dump(by_alias=True, mode="json"))
            else:
                self.broadcast.remove(path)
        except StoreUnavailableError as exc:
            logger.debug("typing_write_failed", scope=scope.value, scope_id=scope_id, error=str(exc))

    def set_group_typing(self, event_id: str, user_id: str, user_name: str, is_typing: bool) -> None:
        self.set_typing(TypingScope.GROUP, event_id, user_id, user_name, is_typing)

    def set_dm_typing(self, conversation_id: str, user_id: str, user_name: str, is_typing: bool) -> None:
        self.set_typing(TypingScope.DM, conversation_id, user_id, user_name, is_typing)

    def active_typers(self, scope: TypingScope, scope_id: str, viewer_id: str | None = None) -> list[TypingUser]:
        try:
            snapshot = self.broadcast.children(scope_path(scope, scope_id))
        except StoreUnavailableError as exc:
            logger.debug("typing_read_failed", scope=scope.value, scope_id=scope_id, error=str(exc))
            return []
        return _fresh_users(snapshot, self.clock(), self.ttl, viewer_id)

    def status(self, scope: TypingScope, scope_id: str, viewer_id: str | None = None) -> TypingStatus:
        users = self.active_typers(scope, scope_id, viewer_id)
        return TypingStatus(is_typing=bool(users), users=users)

    def subscribe(self, scope: TypingScope, scope_id: str, viewer_id: str | None = None) -> TypingSubscription:
        subscription = TypingSubscription(viewer_id, self.ttl, self.clock)
        try:
            subscription._unsubscribe = self.broadcast.subscribe(
                scope_path(scope, scope_id), subscription._on_snapshot
            )
        except StoreUnavailableError as exc:
            logger.debug("typing_subscribe_failed", scope=scope.value, scope_id=scope_id, error=str(exc))
        return subscription

    def handler(self, scope: TypingScope, scope_id: str, user_id: str, user_name: str) -> TypingHandler:
        return TypingHandler(self, scope, scope_id, user_id, user_name, idle=self.idle)


class TypingHandler:
    """Drives a presence client from input-box events.

    Keystrokes emit (debounced by the presence client); blur, send and
    ``idle`` seconds without a keystroke clear the indicator.
    """

    def __init__(
        self,
        presence: TypingPresence,
        scope: TypingScope,
        scope_id: str,
        user_id: str,
        user_name: str,
        idle: timedelta = timedelta(seconds=2),
    ) -> None:
        self.presence = presence
        self.scope = scope
        self.scope_id = scope_id
        self.user_id = user_id
        self.user_name = user_name
        self.idle = idle
        self._last_keystroke: datetime | None = None

    @property
    def is_active(self) -> bool:
        return self._last_keystroke is not None

    def on_change_text(self, text: str) -> None:
        if not text.strip():
            self.clear()
            return
        self._last_keystroke = self.presence.clock()
        self.presence.set_typing(self.scope, self.scope_id, self.user_id, self.user_name, True)

    def on_blur(self) -> None:
        self.clear()

    def on_send(self) -> None:
        self.clear()

    def check_idle(self) -> None:
        """Call periodically; clears once the user stops typing for ``idle``."""
        if self._last_keystroke is None:
            return
        if self.presence.clock() - self._last_keystroke >= self.idle:
            self.clear()

    def clear(self) -> None:
        if self._last_keystroke is None:
            return
        self._last_keystroke = None
        self.presence.set_typing(self.scope, self.scope_id, self.user_id, self.user_name, False)
