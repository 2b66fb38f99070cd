"""Per-event group channel.

Every post runs the same gate: chat removal, mute, entitlement, then phase.
Announcements are reserved for hosts and venues and skip the posting rate
limit. Deletion is soft; deleted messages stay stored but are excluded from
every read path.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import structlog

from eventsocial.config import SocialSettings
from eventsocial.domain.bus import EventBus
from eventsocial.domain.events import GroupMessageDeleted, GroupMessagePosted
from eventsocial.domain.models import (
    Clock,
    Entitlement,
    EventPhase,
    GroupChatInfo,
    GroupMessage,
    GroupMessageType,
    utcnow,
)
from eventsocial.domain.results import ActionResult, Reasons
from eventsocial.repos.documents import GroupMessageRepository, ReadMarkerRepository
from eventsocial.repos.interfaces import StoreUnavailableError
from eventsocial.services.access import AccessService
from eventsocial.services.entitlements import EntitlementUnavailableError
from eventsocial.services.phase import is_interactive

logger = structlog.get_logger(__name__)

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


@dataclass(frozen=True)
class GroupLimits:
    page_size: int = 50
    rate_count: int = 20
    rate_window: timedelta = timedelta(seconds=60)
    default_mute: timedelta = timedelta(minutes=60)

    @classmethod
    def from_settings(cls, settings: SocialSettings) -> GroupLimits:
        return cls(
            page_size=settings.group_page_size,
            rate_count=settings.group_rate_limit_count,
            rate_window=timedelta(seconds=settings.group_rate_limit_seconds),
            default_mute=timedelta(minutes=settings.default_mute_minutes),
        )


class GroupChannel:
    def __init__(
        self,
        messages: GroupMessageRepository,
        markers: ReadMarkerRepository,
        access: AccessService,
        bus: EventBus,
        limits: GroupLimits | None = None,
        clock: Clock = utcnow,
    ) -> None:
        self.messages = messages
        self.markers = markers
        self.access = access
        self.ledger = access.ledger
        self.bus = bus
        self.limits = limits or GroupLimits()
        self.clock = clock

    def _moderator(self, user_id: str, event_id: str) -> Entitlement | None:
        """The user's entitlement if it makes them a moderator of the event."""
        entitlement = self.access.resolve_entitlement(user_id, event_id)
        if entitlement is None or not entitlement.is_moderator:
            return None
        return entitlement

    # ------------------------------------------------------------------
    # Posting
    # ------------------------------------------------------------------

    def post(
        self,
        event_id: str,
        user_id: str,
        user_name: str,
        content: str,
        message_type: GroupMessageType = GroupMessageType.TEXT,
        badge: str | None = None,
        is_anonymous: bool = False,
    ) -> ActionResult:
        if not content.strip():
            return ActionResult.denied(Reasons.EMPTY_MESSAGE)
        if message_type == GroupMessageType.SYSTEM:
            return ActionResult.denied(Reasons.MODERATOR_ONLY)

        try:
            if self.ledger.is_removed(event_id, user_id):
                return ActionResult.denied(Reasons.REMOVED)
            if self.ledger.is_muted(event_id, user_id):
                return ActionResult.denied(Reasons.MUTED)

            entitlement = self.access.resolve_entitlement(user_id, event_id)
            if entitlement is None:
                return ActionResult.denied(Reasons.NO_TICKET)
            event = self.access.get_event(event_id)
            if event is None:
                return ActionResult.not_found(Reasons.EVENT_NOT_FOUND)
            phase = self.access.phase_for(event)
            if phase == EventPhase.ARCHIVED:
                return ActionResult.denied(Reasons.CHAT_READ_ONLY)
            if not is_interactive(phase):
                return ActionResult.denied(Reasons.CHAT_ENDED)

            now = self.clock()
            is_announcement = message_type == GroupMessageType.ANNOUNCEMENT
            if is_announcement:
                if not entitlement.is_moderator:
                    return ActionResult.denied(Reasons.ANNOUNCEMENT_FORBIDDEN)
            else:
                recent = self.messages.sent_by_since(event_id, user_id, now - self.limits.rate_window)
                if len(recent) >= self.limits.rate_count:
                    logger.info("group_post_rate_limited", event_id=event_id, user_id=user_id)
                    return ActionResult.denied(Reasons.RATE_LIMITED)

            message = GroupMessage(
                event_id=event_id,
                sender_id=user_id,
                sender_name=user_name,
                sender_badge=entitlement.type.value if entitlement.is_moderator else badge,
                content=content,
                type=message_type,
                is_anonymous=is_anonymous and not is_announcement,
                created_at=now,
            )
            self.messages.add(message)
        except (StoreUnavailableError, EntitlementUnavailableError):
            return ActionResult.transient()

        self.bus.publish(
            GroupMessagePosted(
                event_id=event_id,
                message_id=message.id,
                sender_id=user_id,
                is_announcement=is_announcement,
            )
        )
        return ActionResult.ok(message_id=message.id)

    def announce(self, event_id: str, user_id: str, user_name: str, content: str) -> ActionResult:
        return self.post(event_id, user_id, user_name, content, GroupMessageType.ANNOUNCEMENT)

    def delete_message(self, message_id: str, actor_id: str) -> ActionResult:
        """Soft-delete a message. Senders may delete their own; moderators any."""
        try:
            message = self.messages.get(message_id)
            if message is None:
                return ActionResult.not_found(Reasons.MESSAGE_NOT_FOUND)
            if message.is_deleted:
                return ActionResult.not_found(Reasons.MESSAGE_DELETED)
            if message.sender_id != actor_id and self._moderator(actor_id, message.event_id) is None:
                return ActionResult.denied(Reasons.CANNOT_DELETE)

            now = self.clock()
            self.messages.update(message_id, isDeleted=True, deletedBy=actor_id, deletedAt=now)
        except (StoreUnavailableError, EntitlementUnavailableError):
            return ActionResult.transient()

        logger.info("group_message_deleted", event_id=message.event_id, message_id=message_id)
        self.bus.publish(
            GroupMessageDeleted(
                event_id=message.event_id,
                message_id=message_id,
                deleted_by=actor_id,
                occurred_at=now,
            )
        )
        return ActionResult.ok(message_id=message_id)

    def toggle_reaction(self, message_id: str, user_id: str, emoji: str) -> ActionResult:
        """Add ``user_id`` to the emoji's reactors, or take them off if present."""
        try:
            message = self.messages.get(message_id)
            if message is None or message.is_deleted:
                return ActionResult.not_found(Reasons.MESSAGE_NOT_FOUND)
        except StoreUnavailableError:
            return ActionResult.transient()

        access = self.access.chat_access(user_id, message.event_id)
        if not access.allowed:
            return access.as_result()

        reactions = message.reactions
        users = reactions.setdefault(emoji, set())
        if user_id in users:
            users.discard(user_id)
        else:
            users.add(user_id)
        try:
            self.messages.update(
                message_id,
                reactions={e: sorted(u) for e, u in reactions.items() if u},
            )
        except StoreUnavailableError:
            return ActionResult.transient()
        return ActionResult.ok(message_id=message_id)

    # ------------------------------------------------------------------
    # Moderation
    # ------------------------------------------------------------------

    def mute(
        self,
        event_id: str,
        user_id: str,
        muted_by: str,
        duration: timedelta | None = None,
        permanent: bool = False,
    ) -> ActionResult:
        """Mute a user for ``duration`` (default one hour) or permanently."""
        try:
            if self._moderator(muted_by, event_id) is None:
                return ActionResult.denied(Reasons.MODERATOR_ONLY)
        except EntitlementUnavailableError:
            return ActionResult.transient()
        length = None if permanent else (duration or self.limits.default_mute)
        return self.ledger.mute(event_id, user_id, muted_by, length)

    def unmute(self, event_id: str, user_id: str, actor_id: str) -> ActionResult:
        try:
            if self._moderator(actor_id, event_id) is None:
                return ActionResult.denied(Reasons.MODERATOR_ONLY)
        except EntitlementUnavailableError:
            return ActionResult.transient()
        return self.ledger.unmute(event_id, user_id)

    def remove(self, event_id: str, user_id: str, removed_by: str, reason: str | None = None) -> ActionResult:
        try:
            if self._moderator(removed_by, event_id) is None:
                return ActionResult.denied(Reasons.MODERATOR_ONLY)
        except EntitlementUnavailableError:
            return ActionResult.transient()
        return self.ledger.remove(event_id, user_id, removed_by, reason)

    # ------------------------------------------------------------------
    # Reads (best effort)
    # ------------------------------------------------------------------

    def info(self, event_id: str) -> GroupChatInfo | None:
        try:
            event = self.access.get_event(event_id)
        except StoreUnavailableError:
            return None
        if event is None:
            return None
        phase = self.access.phase_for(event)
        return GroupChatInfo(
            event_id=event_id,
            enabled=is_interactive(phase),
            phase=phase,
            participant_count=self.access.directory.participant_count(event_id),
        )

    def recent_messages(self, event_id: str, limit: int | None = None) -> list[GroupMessage]:
        """Latest visible messages, oldest first."""
        try:
            return self.messages.recent(event_id, limit or self.limits.page_size)
        except StoreUnavailableError:
            logger.warning("group_messages_unavailable", event_id=event_id)
            return []

    def mark_read(self, event_id: str, user_id: str) -> None:
        try:
            self.markers.mark(event_id, user_id, self.clock())
        except StoreUnavailableError:
            logger.warning("group_mark_read_failed", event_id=event_id, user_id=user_id)

    def unread_counts(self, user_id: str, event_ids: list[str]) -> dict[str, int]:
        """Visible messages from others since the user's last-read marker."""
        counts: dict[str, int] = {}
        try:
            for event_id in event_ids:
                marker = self.markers.get(event_id, user_id)
                since = marker.last_read_at if marker else _EPOCH
                counts[event_id] = sum(
                    1
                    for m in self.messages.visible_since(event_id, since)
                    if m.sender_id != user_id
                )
        except StoreUnavailableError:
            logger.warning("group_unread_counts_unavailable", user_id=user_id)
            return {}
        return counts
