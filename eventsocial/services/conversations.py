"""Private 1:1 conversations between attendees of the same event.

State machine::

    pending --accept--> accepted
    pending --decline-> declined
    any     --block---> blocked   (reopen only after an explicit unblock,
                                   and only back to pending)

A pair has at most one conversation per event. Its id is derived from the
event and the sorted pair, so concurrent ``initiate`` calls from both sides
converge on the same record.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, time, timedelta

import structlog

from eventsocial.config import SocialSettings
from eventsocial.domain.bus import EventBus
from eventsocial.domain.events import (
    ConversationAccepted,
    ConversationDeclined,
    ConversationRequested,
    DirectMessageSent,
)
from eventsocial.domain.models import (
    Clock,
    Conversation,
    ConversationStatus,
    DirectMessage,
    DirectMessageType,
    SavedContact,
    utcnow,
)
from eventsocial.domain.results import ActionResult, Reasons
from eventsocial.repos.documents import (
    ConversationRepository,
    DirectMessageRepository,
    SavedContactRepository,
    conversation_id_for,
)
from eventsocial.repos.interfaces import StoreUnavailableError
from eventsocial.services.access import AccessService
from eventsocial.services.entitlements import EntitlementUnavailableError
from eventsocial.services.phase import event_end

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class RequestLimits:
    """Anti-abuse limits on new message requests."""

    daily_requests: int = 10
    declines: int = 3
    decline_window: timedelta = timedelta(hours=24)
    retention: timedelta = timedelta(days=7)
    page_size: int = 100

    @classmethod
    def from_settings(cls, settings: SocialSettings) -> RequestLimits:
        return cls(
            daily_requests=settings.dm_daily_request_limit,
            declines=settings.dm_rejection_limit,
            decline_window=timedelta(hours=settings.dm_rejection_window_hours),
            retention=settings.dm_retention,
            page_size=settings.dm_page_size,
        )


def status_label(conversation: Conversation, viewer_id: str) -> dict:
    """Chip text for the conversation list, from the viewer's side."""
    if conversation.status == ConversationStatus.PENDING:
        if conversation.initiated_by == viewer_id:
            return {"label": "Awaiting acceptance", "chip": "Pending", "can_chat": False}
        return {"label": "Wants to connect", "chip": "Request received", "can_chat": False}
    if conversation.status == ConversationStatus.ACCEPTED:
        return {"label": "Connected", "chip": "Connected", "can_chat": True}
    if conversation.status == ConversationStatus.DECLINED:
        return {"label": "Request declined", "chip": "Declined", "can_chat": False}
    return {"label": "Blocked", "chip": "Blocked", "can_chat": False}


class ConversationService:
    def __init__(
        self,
        conversations: ConversationRepository,
        messages: DirectMessageRepository,
        contacts: SavedContactRepository,
        access: AccessService,
        bus: EventBus,
        limits: RequestLimits | None = None,
        clock: Clock = utcnow,
    ) -> None:
        self.conversations = conversations
        self.messages = messages
        self.contacts = contacts
        self.access = access
        self.ledger = access.ledger
        self.bus = bus
        self.limits = limits or RequestLimits()
        self.clock = clock

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _enforce_block(self, conversation: Conversation) -> bool:
        """Move the conversation to ``blocked`` if its participants block each other.

        Blocks are only checked at interaction time, so a block placed after
        acceptance takes effect here.
        """
        a, b = conversation.participants
        if not self.ledger.is_blocked(a, b, conversation.event_id):
            return False
        if conversation.status != ConversationStatus.BLOCKED:
            self.conversations.update(conversation.id, status=ConversationStatus.BLOCKED.value)
            logger.info("conversation_blocked_on_interaction", conversation_id=conversation.id)
        return True

    def _start_of_day(self, now: datetime) -> datetime:
        return datetime.combine(now.date(), time.min, tzinfo=now.tzinfo)

    def _rate_limit_reason(self, sender_id: str, now: datetime) -> Reasons | None:
        sent_today = self.conversations.initiated_since(sender_id, self._start_of_day(now))
        if len(sent_today) >= self.limits.daily_requests:
            return Reasons.DAILY_LIMIT
        declined = [
            c
            for c in self.conversations.declined_since(sender_id, now - self.limits.decline_window)
            if c.declined_by != sender_id
        ]
        if len(declined) >= self.limits.declines:
            return Reasons.TOO_MANY_DECLINES
        return None

    # ------------------------------------------------------------------
    # State transitions
    # ------------------------------------------------------------------

    def initiate(self, sender_id: str, recipient_id: str, event_id: str) -> ActionResult:
        """Open a message request, or return the pair's existing conversation."""
        permission = self.access.can_initiate_dm(sender_id, recipient_id, event_id)
        if not permission.allowed:
            logger.info("dm_request_denied", sender_id=sender_id, event_id=event_id, reason=permission.reason)
            return permission.as_result()

        try:
            existing = self.conversations.find(event_id, sender_id, recipient_id)
            if existing is not None:
                if existing.status == ConversationStatus.BLOCKED:
                    return ActionResult.denied(Reasons.CANNOT_MESSAGE_USER)
                return ActionResult.ok(conversation_id=existing.id)

            now = self.clock()
            limited = self._rate_limit_reason(sender_id, now)
            if limited is not None:
                logger.info("dm_request_rate_limited", sender_id=sender_id, reason=limited.name)
                return ActionResult.denied(limited)

            event = self.access.get_event(event_id)
            if event is None:
                return ActionResult.denied(Reasons.EVENT_NOT_FOUND)

            conversation = Conversation(
                id=conversation_id_for(event_id, sender_id, recipient_id),
                event_id=event_id,
                participants=(sender_id, recipient_id),
                initiated_by=sender_id,
                created_at=now,
                expires_at=event_end(event.start_date, self.access.windows) + self.limits.retention,
            )
            self.conversations.save(conversation)
        except StoreUnavailableError:
            return ActionResult.transient()

        logger.info("dm_request_created", conversation_id=conversation.id, event_id=event_id)
        self.bus.publish(
            ConversationRequested(
                conversation_id=conversation.id,
                event_id=event_id,
                sender_id=sender_id,
                recipient_id=recipient_id,
            )
        )
        return ActionResult.ok(conversation_id=conversation.id)

    def accept(self, conversation_id: str, user_id: str) -> ActionResult:
        try:
            conversation = self.conversations.get(conversation_id)
            if conversation is None:
                return ActionResult.not_found(Reasons.CONVERSATION_NOT_FOUND)
            if user_id not in conversation.participants:
                return ActionResult.denied(Reasons.NOT_PARTICIPANT)
            if conversation.initiated_by == user_id:
                return ActionResult.denied(Reasons.CANNOT_ACCEPT_OWN)
            if self._enforce_block(conversation):
                return ActionResult.denied(Reasons.CONVERSATION_BLOCKED)

            if conversation.status == ConversationStatus.ACCEPTED:
                return ActionResult.ok(conversation_id=conversation_id)
            if conversation.status == ConversationStatus.DECLINED:
                return ActionResult.denied(Reasons.ALREADY_DECLINED)
            if conversation.status == ConversationStatus.BLOCKED:
                return ActionResult.denied(Reasons.CONVERSATION_BLOCKED)

            self.conversations.update(
                conversation_id,
                status=ConversationStatus.ACCEPTED.value,
                acceptedAt=self.clock(),
            )
        except StoreUnavailableError:
            return ActionResult.transient()

        logger.info("dm_request_accepted", conversation_id=conversation_id)
        self.bus.publish(ConversationAccepted(conversation_id=conversation_id, accepted_by=user_id))
        return ActionResult.ok(conversation_id=conversation_id)

    def decline(self, conversation_id: str, user_id: str) -> ActionResult:
        """Either side may decline a pending request.

        Only a decline by the recipient counts as a rejection against the
        initiator; the initiator declining withdraws the request.
        """
        try:
            conversation = self.conversations.get(conversation_id)
            if conversation is None:
                return ActionResult.not_found(Reasons.CONVERSATION_NOT_FOUND)
            if user_id not in conversation.participants:
                return ActionResult.denied(Reasons.NOT_PARTICIPANT)
            if conversation.status == ConversationStatus.DECLINED:
                return ActionResult.denied(Reasons.ALREADY_DECLINED)
            if conversation.status == ConversationStatus.ACCEPTED:
                return ActionResult.denied(Reasons.ALREADY_ACCEPTED)
            if conversation.status == ConversationStatus.BLOCKED:
                return ActionResult.denied(Reasons.CONVERSATION_BLOCKED)

            self.conversations.update(
                conversation_id,
                status=ConversationStatus.DECLINED.value,
                declinedAt=self.clock(),
                declinedBy=user_id,
            )
        except StoreUnavailableError:
            return ActionResult.transient()

        logger.info("dm_request_declined", conversation_id=conversation_id)
        self.bus.publish(ConversationDeclined(conversation_id=conversation_id, declined_by=user_id))
        return ActionResult.ok(conversation_id=conversation_id)

    def reopen(self, conversation_id: str, user_id: str) -> ActionResult:
        """Turn a blocked conversation back into a fresh request.

        Only possible once no block remains between the participants; the
        reopening user becomes the initiator and the other side must accept
        again.
        """
        try:
            conversation = self.conversations.get(conversation_id)
            if conversation is None:
                return ActionResult.not_found(Reasons.CONVERSATION_NOT_FOUND)
            if user_id not in conversation.participants:
                return ActionResult.denied(Reasons.NOT_PARTICIPANT)
            if conversation.status != ConversationStatus.BLOCKED:
                return ActionResult.denied(Reasons.NOT_BLOCKED_STATE)
            a, b = conversation.participants
            if self.ledger.is_blocked(a, b, conversation.event_id):
                return ActionResult.denied(Reasons.STILL_BLOCKED)

            self.conversations.update(
                conversation_id,
                status=ConversationStatus.PENDING.value,
                initiatedBy=user_id,
                acceptedAt=None,
                declinedAt=None,
                declinedBy=None,
            )
        except StoreUnavailableError:
            return ActionResult.transient()

        logger.info("conversation_reopened", conversation_id=conversation_id)
        return ActionResult.ok(conversation_id=conversation_id)

    def send_message(
        self,
        conversation_id: str,
        sender_id: str,
        content: str,
        message_type: DirectMessageType = DirectMessageType.TEXT,
    ) -> ActionResult:
        if not content.strip():
            return ActionResult.denied(Reasons.EMPTY_MESSAGE)
        try:
            conversation = self.conversations.get(conversation_id)
            if conversation is None:
                return ActionResult.not_found(Reasons.CONVERSATION_NOT_FOUND)
            if sender_id not in conversation.participants:
                return ActionResult.denied(Reasons.NOT_PARTICIPANT)
            if self._enforce_block(conversation):
                return ActionResult.denied(Reasons.CONVERSATION_BLOCKED)
            if conversation.status == ConversationStatus.BLOCKED:
                return ActionResult.denied(Reasons.CONVERSATION_BLOCKED)
            if conversation.status != ConversationStatus.ACCEPTED:
                return ActionResult.denied(Reasons.CONVERSATION_INACTIVE)

            now = self.clock()
            if conversation.is_expired(now):
                return ActionResult.denied(Reasons.CONVERSATION_EXPIRED)
            # Saved contacts outlive the event, and with it the ticket.
            if not conversation.is_saved:
                if self.access.resolve_entitlement(sender_id, conversation.event_id) is None:
                    return ActionResult.denied(Reasons.NO_TICKET)

            message = DirectMessage(
                conversation_id=conversation_id,
                sender_id=sender_id,
                recipient_id=conversation.other(sender_id),
                content=content,
                type=message_type,
                created_at=now,
            )
            self.messages.add(message)
        except (StoreUnavailableError, EntitlementUnavailableError):
            return ActionResult.transient()

        self.bus.publish(
            DirectMessageSent(
                conversation_id=conversation_id,
                message_id=message.id,
                sender_id=sender_id,
                content=content,
                sent_at=now,
            )
        )
        return ActionResult.ok(conversation_id=conversation_id, message_id=message.id)

    def save_contact(
        self,
        user_id: str,
        contact_user_id: str,
        contact_name: str,
        event_id: str,
        contact_avatar: str | None = None,
        note: str | None = None,
    ) -> ActionResult:
        """Keep an accepted connection beyond the event's social window."""
        try:
            conversation = self.conversations.find(event_id, user_id, contact_user_id)
            if conversation is None:
                return ActionResult.not_found(Reasons.CONVERSATION_NOT_FOUND)
            if user_id not in conversation.participants:
                return ActionResult.denied(Reasons.NOT_PARTICIPANT)
            if self._enforce_block(conversation) or conversation.status == ConversationStatus.BLOCKED:
                return ActionResult.denied(Reasons.CONVERSATION_BLOCKED)
            if conversation.status != ConversationStatus.ACCEPTED:
                return ActionResult.denied(Reasons.CONVERSATION_INACTIVE)
            now = self.clock()
            if conversation.is_expired(now):
                return ActionResult.denied(Reasons.CONVERSATION_EXPIRED)

            event = self.access.get_event(event_id)
            self.contacts.save(
                SavedContact(
                    id=self.contacts.contact_id(user_id, contact_user_id),
                    user_id=user_id,
                    contact_user_id=contact_user_id,
                    contact_name=contact_name,
                    contact_avatar=contact_avatar,
                    event_id=event_id,
                    event_title=event.title if event else "",
                    saved_at=now,
                    note=note,
                )
            )
            self.conversations.update(conversation.id, isSaved=True)
        except StoreUnavailableError:
            return ActionResult.transient()

        logger.info("contact_saved", conversation_id=conversation.id)
        return ActionResult.ok(conversation_id=conversation.id)

    def toggle_reaction(self, message_id: str, user_id: str, emoji: str) -> ActionResult:
        try:
            message = self.messages.get(message_id)
            if message is None:
                return ActionResult.not_found(Reasons.MESSAGE_NOT_FOUND)
            if user_id not in (message.sender_id, message.recipient_id):
                return ActionResult.denied(Reasons.NOT_PARTICIPANT)
            reactions = message.reactions
            users = reactions.setdefault(emoji, set())
            if user_id in users:
                users.discard(user_id)
            else:
                users.add(user_id)
            self.messages.update(
                message_id,
                reactions={e: sorted(u) for e, u in reactions.items() if u},
            )
        except StoreUnavailableError:
            return ActionResult.transient()
        return ActionResult.ok(message_id=message_id)

    # ------------------------------------------------------------------
    # Reads (best effort)
    # ------------------------------------------------------------------

    def get(self, conversation_id: str) -> Conversation | None:
        try:
            return self.conversations.get(conversation_id)
        except StoreUnavailableError:
            return None

    def conversations_for_event(self, user_id: str, event_id: str) -> list[Conversation]:
        try:
            return self.conversations.for_user_in_event(user_id, event_id)
        except StoreUnavailableError:
            logger.warning("conversation_listing_unavailable", user_id=user_id)
            return []

    def pending_requests(self, user_id: str) -> list[Conversation]:
        """Requests waiting on ``user_id`` to accept or decline."""
        try:
            return self.conversations.pending_for(user_id)
        except StoreUnavailableError:
            logger.warning("pending_requests_unavailable", user_id=user_id)
            return []

    def messages_for(self, conversation_id: str, viewer_id: str, limit: int | None = None) -> list[DirectMessage]:
        """Latest messages, oldest first. Non-participants see nothing."""
        try:
            conversation = self.conversations.get(conversation_id)
            if conversation is None or viewer_id not in conversation.participants:
                return []
            return self.messages.latest(conversation_id, limit or self.limits.page_size)
        except StoreUnavailableError:
            return []

    def mark_read(self, conversation_id: str, user_id: str) -> None:
        try:
            now = self.clock()
            for message in self.messages.unread_for(user_id, conversation_id):
                self.messages.update(message.id, readAt=now)
        except StoreUnavailableError:
            logger.warning("mark_read_failed", conversation_id=conversation_id)

    def unread_counts(self, user_id: str) -> dict[str, int]:
        counts: dict[str, int] = {}
        try:
            for message in self.messages.unread_for(user_id):
                counts[message.conversation_id] = counts.get(message.conversation_id, 0) + 1
        except StoreUnavailableError:
            return {}
        return counts

    def saved_contacts(self, user_id: str) -> list[SavedContact]:
        try:
            return self.contacts.list_for(user_id)
        except StoreUnavailableError:
            logger.warning("saved_contacts_unavailable", user_id=user_id)
            return []
