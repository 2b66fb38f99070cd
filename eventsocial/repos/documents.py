"""Typed repositories over the external document store.

Each repository knows its collection names and field spellings; services only
ever see domain models. All calls carry the configured store timeout.
"""

from __future__ import annotations

from datetime import datetime

from eventsocial.domain.models import (
    AuditEntry,
    Block,
    ChatRemoval,
    Conversation,
    ConversationStatus,
    DirectMessage,
    EventRecord,
    GroupMessage,
    GuestlistEntry,
    Mute,
    OrderRecord,
    PublicAttendee,
    ReadMarker,
    Report,
    ReportStatus,
    SavedContact,
    TicketAssignment,
)
from eventsocial.repos.interfaces import DocumentStore, where
from eventsocial.repos.records import decode, decode_all, encode

EVENTS = "events"
ORDERS = "orders"
GUESTLIST = "guestlist"
TICKET_ASSIGNMENTS = "ticketAssignments"
PUBLIC_ATTENDEES = "public_attendees"
CONVERSATIONS = "privateConversations"
DIRECT_MESSAGES = "directMessages"
GROUP_MESSAGES = "eventGroupMessages"
GROUP_READ_MARKERS = "eventGroupReadMarkers"
BLOCKS = "userBlocks"
MUTES = "eventMutes"
REMOVALS = "eventChatRemovals"
REPORTS = "userReports"
SAVED_CONTACTS = "savedContacts"
AUDIT = "moderationAudit"

VALID_ORDER_STATUSES = ["confirmed", "checked_in"]
ATTENDEE_TYPES = ["purchase", "rsvp", "transfer"]


def conversation_id_for(event_id: str, user_a: str, user_b: str) -> str:
    """Deterministic id for the one conversation a pair may have per event."""
    first, second = sorted((user_a, user_b))
    return f"{event_id}__{first}__{second}"


class _DocumentRepository:
    def __init__(self, store: DocumentStore, timeout: float | None = None) -> None:
        self.store = store
        self.timeout = timeout


class GrantRecordRepository(_DocumentRepository):
    """Read-only access to the ticketing records entitlements derive from."""

    def get_event(self, event_id: str) -> EventRecord | None:
        return decode(EventRecord, self.store.get(EVENTS, event_id, timeout=self.timeout))

    def valid_orders(self, user_id: str, event_id: str) -> list[OrderRecord]:
        raws = self.store.query(
            ORDERS,
            [
                where("userId", "==", user_id),
                where("eventId", "==", event_id),
                where("status", "in", VALID_ORDER_STATUSES),
            ],
            timeout=self.timeout,
        )
        return decode_all(OrderRecord, raws)

    def transferred_orders(self, user_id: str, event_id: str) -> list[OrderRecord]:
        raws = self.store.query(
            ORDERS,
            [
                where("userId", "==", user_id),
                where("eventId", "==", event_id),
                where("transferredFrom", "!=", None),
            ],
            timeout=self.timeout,
        )
        return decode_all(OrderRecord, raws)

    def approved_guestlist(self, user_id: str, event_id: str) -> list[GuestlistEntry]:
        raws = self.store.query(
            GUESTLIST,
            [
                where("userId", "==", user_id),
                where("eventId", "==", event_id),
                where("status", "==", "approved"),
            ],
            timeout=self.timeout,
        )
        return decode_all(GuestlistEntry, raws)

    def active_assignments(self, user_id: str, event_id: str) -> list[TicketAssignment]:
        raws = self.store.query(
            TICKET_ASSIGNMENTS,
            [
                where("userId", "==", user_id),
                where("eventId", "==", event_id),
                where("status", "==", "active"),
            ],
            timeout=self.timeout,
        )
        return decode_all(TicketAssignment, raws)

    def public_attendees(self, event_id: str, limit: int | None = None) -> list[PublicAttendee]:
        raws = self.store.query(
            PUBLIC_ATTENDEES,
            [where("eventId", "==", event_id), where("type", "in", ATTENDEE_TYPES)],
            limit=limit,
            timeout=self.timeout,
        )
        return decode_all(PublicAttendee, raws)

    def ticket_holder_ids(self, event_id: str) -> set[str]:
        raws = self.store.query(
            ORDERS,
            [where("eventId", "==", event_id), where("status", "in", VALID_ORDER_STATUSES)],
            timeout=self.timeout,
        )
        return {order.user_id for order in decode_all(OrderRecord, raws)}


class ConversationRepository(_DocumentRepository):
    def get(self, conversation_id: str) -> Conversation | None:
        return decode(
            Conversation, self.store.get(CONVERSATIONS, conversation_id, timeout=self.timeout)
        )

    def find(self, event_id: str, user_a: str, user_b: str) -> Conversation | None:
        return self.get(conversation_id_for(event_id, user_a, user_b))

    def save(self, conversation: Conversation) -> None:
        self.store.set(CONVERSATIONS, conversation.id, encode(conversation), timeout=self.timeout)

    def update(self, conversation_id: str, **fields) -> None:
        self.store.update(CONVERSATIONS, conversation_id, fields, timeout=self.timeout)

    def for_user(self, user_id: str) -> list[Conversation]:
        raws = self.store.query(
            CONVERSATIONS,
            [where("participants", "array_contains", user_id)],
            timeout=self.timeout,
        )
        return decode_all(Conversation, raws)

    def for_user_in_event(self, user_id: str, event_id: str) -> list[Conversation]:
        raws = self.store.query(
            CONVERSATIONS,
            [
                where("eventId", "==", event_id),
                where("participants", "array_contains", user_id),
            ],
            timeout=self.timeout,
        )
        return decode_all(Conversation, raws)

    def between(self, user_a: str, user_b: str) -> list[Conversation]:
        """Every conversation the two users share, across all events."""
        return [c for c in self.for_user(user_a) if user_b in c.participants]

    def pending_for(self, user_id: str) -> list[Conversation]:
        raws = self.store.query(
            CONVERSATIONS,
            [
                where("participants", "array_contains", user_id),
                where("status", "==", ConversationStatus.PENDING.value),
            ],
            timeout=self.timeout,
        )
        return [c for c in decode_all(Conversation, raws) if c.initiated_by != user_id]

    def initiated_since(self, user_id: str, since: datetime) -> list[Conversation]:
        raws = self.store.query(
            CONVERSATIONS,
            [where("initiatedBy", "==", user_id), where("createdAt", ">=", since)],
            timeout=self.timeout,
        )
        return decode_all(Conversation, raws)

    def declined_since(self, user_id: str, since: datetime) -> list[Conversation]:
        raws = self.store.query(
            CONVERSATIONS,
            [
                where("initiatedBy", "==", user_id),
                where("status", "==", ConversationStatus.DECLINED.value),
                where("declinedAt", ">=", since),
            ],
            timeout=self.timeout,
        )
        return decode_all(Conversation, raws)


class DirectMessageRepository(_DocumentRepository):
    def add(self, message: DirectMessage) -> None:
        self.store.set(DIRECT_MESSAGES, message.id, encode(message), timeout=self.timeout)

    def get(self, message_id: str) -> DirectMessage | None:
        return decode(
            DirectMessage, self.store.get(DIRECT_MESSAGES, message_id, timeout=self.timeout)
        )

    def update(self, message_id: str, **fields) -> None:
        self.store.update(DIRECT_MESSAGES, message_id, fields, timeout=self.timeout)

    def latest(self, conversation_id: str, limit: int) -> list[DirectMessage]:
        """Newest ``limit`` messages, returned oldest first."""
        raws = self.store.query(
            DIRECT_MESSAGES,
            [where("conversationId", "==", conversation_id)],
            order_by="createdAt",
            descending=True,
            limit=limit,
            timeout=self.timeout,
        )
        return list(reversed(decode_all(DirectMessage, raws)))

    def unread_for(self, user_id: str, conversation_id: str | None = None) -> list[DirectMessage]:
        filters = [where("recipientId", "==", user_id), where("readAt", "==", None)]
        if conversation_id is not None:
            filters.append(where("conversationId", "==", conversation_id))
        raws = self.store.query(DIRECT_MESSAGES, filters, timeout=self.timeout)
        return decode_all(DirectMessage, raws)


class GroupMessageRepository(_DocumentRepository):
    def add(self, message: GroupMessage) -> None:
        self.store.set(GROUP_MESSAGES, message.id, encode(message), timeout=self.timeout)

    def get(self, message_id: str) -> GroupMessage | None:
        return decode(GroupMessage, self.store.get(GROUP_MESSAGES, message_id, timeout=self.timeout))

    def update(self, message_id: str, **fields) -> None:
        self.store.update(GROUP_MESSAGES, message_id, fields, timeout=self.timeout)

    def recent(self, event_id: str, limit: int) -> list[GroupMessage]:
        """Newest ``limit`` visible messages, returned oldest first.

        Deleted messages stay in storage but never come back from here.
        """
        raws = self.store.query(
            GROUP_MESSAGES,
            [where("eventId", "==", event_id), where("isDeleted", "==", False)],
            order_by="createdAt",
            descending=True,
            limit=limit,
            timeout=self.timeout,
        )
        return list(reversed(decode_all(GroupMessage, raws)))

    def visible_since(self, event_id: str, since: datetime, limit: int | None = None) -> list[GroupMessage]:
        raws = self.store.query(
            GROUP_MESSAGES,
            [
                where("eventId", "==", event_id),
                where("isDeleted", "==", False),
                where("createdAt", ">", since),
            ],
            limit=limit,
            timeout=self.timeout,
        )
        return decode_all(GroupMessage, raws)

    def sent_by_since(self, event_id: str, user_id: str, since: datetime) -> list[GroupMessage]:
        raws = self.store.query(
            GROUP_MESSAGES,
            [
                where("eventId", "==", event_id),
                where("senderId", "==", user_id),
                where("createdAt", ">=", since),
            ],
            timeout=self.timeout,
        )
        return decode_all(GroupMessage, raws)


class ReadMarkerRepository(_DocumentRepository):
    @staticmethod
    def _key(event_id: str, user_id: str) -> str:
        return f"{event_id}__{user_id}"

    def get(self, event_id: str, user_id: str) -> ReadMarker | None:
        raw = self.store.get(GROUP_READ_MARKERS, self._key(event_id, user_id), timeout=self.timeout)
        return decode(ReadMarker, raw)

    def mark(self, event_id: str, user_id: str, at: datetime) -> None:
        marker = ReadMarker(
            id=self._key(event_id, user_id), event_id=event_id, user_id=user_id, last_read_at=at
        )
        self.store.set(GROUP_READ_MARKERS, marker.id, encode(marker), timeout=self.timeout)


class ModerationRepository(_DocumentRepository):
    """Blocks, mutes, chat removals and reports."""

    @staticmethod
    def block_id(blocker_id: str, blocked_id: str, event_id: str | None = None, is_global: bool = False) -> str:
        """One record per directed pair and scope, so a narrower block never replaces a wider one."""
        scope = "global" if is_global or event_id is None else event_id
        return f"{blocker_id}_{blocked_id}_{scope}"

    def put_block(self, block: Block) -> None:
        self.store.set(BLOCKS, block.id, encode(block), timeout=self.timeout)

    def delete_block(self, blocker_id: str, blocked_id: str) -> bool:
        """Remove every block ``blocker_id`` holds against ``blocked_id``, in all scopes."""
        raws = self.store.query(
            BLOCKS,
            [where("blockerId", "==", blocker_id), where("blockedId", "==", blocked_id)],
            timeout=self.timeout,
        )
        for raw in raws:
            self.store.delete(BLOCKS, raw["id"], timeout=self.timeout)
        return bool(raws)

    def blocks_by(self, blocker_id: str) -> list[Block]:
        raws = self.store.query(BLOCKS, [where("blockerId", "==", blocker_id)], timeout=self.timeout)
        return decode_all(Block, raws)

    def blocks_involving(self, user_id: str) -> list[Block]:
        """Blocks the user placed plus blocks placed against them."""
        placed = self.blocks_by(user_id)
        received = self.store.query(BLOCKS, [where("blockedId", "==", user_id)], timeout=self.timeout)
        return placed + decode_all(Block, received)

    def blocks_between(self, user_a: str, user_b: str) -> list[Block]:
        """Blocks in either direction between the two users."""
        found = []
        for blocker, blocked in ((user_a, user_b), (user_b, user_a)):
            raws = self.store.query(
                BLOCKS,
                [where("blockerId", "==", blocker), where("blockedId", "==", blocked)],
                timeout=self.timeout,
            )
            found.extend(decode_all(Block, raws))
        return found

    def add_mute(self, mute: Mute) -> None:
        self.store.set(MUTES, mute.id, encode(mute), timeout=self.timeout)

    def mutes_for(self, event_id: str, user_id: str) -> list[Mute]:
        raws = self.store.query(
            MUTES,
            [where("eventId", "==", event_id), where("userId", "==", user_id)],
            timeout=self.timeout,
        )
        return decode_all(Mute, raws)

    def delete_mute(self, mute_id: str) -> None:
        self.store.delete(MUTES, mute_id, timeout=self.timeout)

    def add_removal(self, removal: ChatRemoval) -> None:
        self.store.set(REMOVALS, removal.id, encode(removal), timeout=self.timeout)

    def removals_for(self, event_id: str, user_id: str) -> list[ChatRemoval]:
        raws = self.store.query(
            REMOVALS,
            [where("eventId", "==", event_id), where("userId", "==", user_id)],
            timeout=self.timeout,
        )
        return decode_all(ChatRemoval, raws)

    def add_report(self, report: Report) -> None:
        self.store.set(REPORTS, report.id, encode(report), timeout=self.timeout)

    def get_report(self, report_id: str) -> Report | None:
        return decode(Report, self.store.get(REPORTS, report_id, timeout=self.timeout))

    def update_report(self, report_id: str, **fields) -> None:
        self.store.update(REPORTS, report_id, fields, timeout=self.timeout)

    def pending_reports(self, event_id: str | None = None) -> list[Report]:
        filters = [where("status", "==", ReportStatus.PENDING.value)]
        if event_id is not None:
            filters.append(where("eventId", "==", event_id))
        raws = self.store.query(REPORTS, filters, order_by="createdAt", timeout=self.timeout)
        return decode_all(Report, raws)


class SavedContactRepository(_DocumentRepository):
    @staticmethod
    def contact_id(user_id: str, contact_user_id: str) -> str:
        return f"{user_id}_{contact_user_id}"

    def save(self, contact: SavedContact) -> None:
        self.store.set(SAVED_CONTACTS, contact.id, encode(contact), timeout=self.timeout)

    def list_for(self, user_id: str) -> list[SavedContact]:
        raws = self.store.query(
            SAVED_CONTACTS,
            [where("userId", "==", user_id)],
            order_by="savedAt",
            descending=True,
            timeout=self.timeout,
        )
        return decode_all(SavedContact, raws)


class AuditRepository(_DocumentRepository):
    """Append-only moderation audit trail."""

    def add(self, entry: AuditEntry) -> None:
        self.store.set(AUDIT, entry.id, encode(entry), timeout=self.timeout)

    def list_for_event(self, event_id: str) -> list[AuditEntry]:
        raws = self.store.query(
            AUDIT, [where("eventId", "==", event_id)], order_by="timestamp", timeout=self.timeout
        )
        return decode_all(AuditEntry, raws)

    def list_for_actor(self, actor_id: str) -> list[AuditEntry]:
        raws = self.store.query(
            AUDIT, [where("actorId", "==", actor_id)], order_by="timestamp", timeout=self.timeout
        )
        return decode_all(AuditEntry, raws)
