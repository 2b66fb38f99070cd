"""Domain models for the event social layer."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import StrEnum
from typing import Annotated, Any, Callable

from dateutil import parser as date_parser
from pydantic import (
    AfterValidator,
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    field_serializer,
    model_validator,
)
from pydantic.alias_generators import to_camel


class EventPhase(StrEnum):
    PRE = "PRE"
    LIVE = "LIVE"
    AFTER = "AFTER"
    ARCHIVED = "ARCHIVED"
    EXPIRED = "EXPIRED"


class EntitlementType(StrEnum):
    TICKET_PURCHASED = "ticket_purchased"
    TICKET_CLAIMED = "ticket_claimed"
    GUESTLIST_APPROVED = "guestlist_approved"
    GROUP_TICKET_SHARE = "group_ticket_share"
    COUPLE_TICKET = "couple_ticket"
    HOST = "host"
    VENUE = "venue"


MODERATOR_TYPES = frozenset({EntitlementType.HOST, EntitlementType.VENUE})


class EntitlementStatus(StrEnum):
    ACTIVE = "active"
    TRANSFERRED = "transferred"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


class ConversationStatus(StrEnum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    BLOCKED = "blocked"


class DirectMessageType(StrEnum):
    TEXT = "text"
    IMAGE = "image"


class GroupMessageType(StrEnum):
    TEXT = "text"
    IMAGE = "image"
    ANNOUNCEMENT = "announcement"
    SYSTEM = "system"


class ReportCategory(StrEnum):
    HARASSMENT = "harassment"
    SPAM = "spam"
    INAPPROPRIATE = "inappropriate"
    SAFETY = "safety"
    OTHER = "other"


class ReportStatus(StrEnum):
    PENDING = "pending"
    REVIEWED = "reviewed"
    RESOLVED = "resolved"
    DISMISSED = "dismissed"


class ModerationAction(StrEnum):
    WARNED = "warned"
    MUTED = "muted"
    REMOVED = "removed"
    BANNED = "banned"


class TypingScope(StrEnum):
    GROUP = "group"
    DM = "dm"


class AuditAction(StrEnum):
    BLOCKED = "blocked"
    UNBLOCKED = "unblocked"
    MUTED = "muted"
    REMOVED = "removed"
    MESSAGE_DELETED = "message_deleted"
    REPORT_FILED = "report_filed"
    REPORT_RESOLVED = "report_resolved"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# Services take the current time from an injected callable, never a global read.
Clock = Callable[[], datetime]
utcnow: Clock = _utcnow


def _new_id() -> str:
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Timestamp coercion
# ---------------------------------------------------------------------------


def _coerce_instant(value: Any) -> Any:
    """Accept datetimes, ISO-ish strings and epoch numbers from raw records.

    Epoch values above 1e11 are taken as milliseconds, the way browser clients
    write them.
    """
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        seconds = value / 1000 if value > 1e11 else value
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    if isinstance(value, str):
        return date_parser.parse(value)
    return value


def _ensure_aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


Instant = Annotated[datetime, BeforeValidator(_coerce_instant), AfterValidator(_ensure_aware)]


class Record(BaseModel):
    """Base for anything read from or written to the document store.

    Store documents use camelCase keys; attributes stay snake_case. Unknown
    keys are dropped at the boundary.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


# ---------------------------------------------------------------------------
# External records (owned by ticketing / events, read-only here)
# ---------------------------------------------------------------------------


class EventRecord(Record):
    id: str
    title: str = ""
    start_date: Instant
    organizer_id: str | None = None
    partner_id: str | None = None
    venue_owner_id: str | None = None


class OrderRecord(Record):
    id: str
    user_id: str
    event_id: str
    status: str
    transferred_from: str | None = None
    tickets: list[dict] = Field(default_factory=list)
    created_at: Instant | None = None

    @property
    def tier_name(self) -> str | None:
        if not self.tickets:
            return None
        return self.tickets[0].get("tierName")


class GuestlistEntry(Record):
    id: str
    user_id: str
    event_id: str
    status: str
    approved_at: Instant | None = None
    created_at: Instant | None = None


class TicketAssignment(Record):
    id: str
    user_id: str
    event_id: str
    order_id: str | None = None
    status: str
    couple_pair_id: str | None = None
    created_at: Instant | None = None


class PublicAttendee(Record):
    id: str
    user_id: str
    event_id: str
    type: str
    user_name: str = "Guest"
    user_avatar: str | None = None


# ---------------------------------------------------------------------------
# Core domain models
# ---------------------------------------------------------------------------


class Entitlement(Record):
    id: str
    user_id: str
    event_id: str
    type: EntitlementType
    status: EntitlementStatus = EntitlementStatus.ACTIVE
    ticket_tier: str | None = None
    order_id: str | None = None
    granted_at: Instant = Field(default_factory=_utcnow)
    expires_at: Instant | None = None

    @property
    def is_active(self) -> bool:
        return self.status == EntitlementStatus.ACTIVE

    @property
    def is_moderator(self) -> bool:
        return self.type in MODERATOR_TYPES


class LastMessage(Record):
    content: str
    sender_id: str
    created_at: Instant


class Conversation(Record):
    id: str
    event_id: str
    participants: tuple[str, str]
    status: ConversationStatus = ConversationStatus.PENDING
    initiated_by: str
    created_at: Instant = Field(default_factory=_utcnow)
    accepted_at: Instant | None = None
    declined_at: Instant | None = None
    declined_by: str | None = None
    expires_at: Instant
    is_saved: bool = False
    last_message: LastMessage | None = None

    @model_validator(mode="after")
    def _two_distinct_participants(self) -> Conversation:
        a, b = self.participants
        if a == b:
            raise ValueError("participants must be two distinct users")
        if self.initiated_by not in self.participants:
            raise ValueError("initiated_by must be a participant")
        return self

    def other(self, user_id: str) -> str:
        a, b = self.participants
        return b if user_id == a else a

    def is_expired(self, now: datetime) -> bool:
        return not self.is_saved and now >= self.expires_at


class DirectMessage(Record):
    id: str = Field(default_factory=_new_id)
    conversation_id: str
    sender_id: str
    recipient_id: str
    content: str
    type: DirectMessageType = DirectMessageType.TEXT
    created_at: Instant = Field(default_factory=_utcnow)
    read_at: Instant | None = None
    reactions: dict[str, set[str]] = Field(default_factory=dict)

    @field_serializer("reactions")
    def _serialize_reactions(self, reactions: dict[str, set[str]]) -> dict[str, list[str]]:
        return {emoji: sorted(users) for emoji, users in reactions.items() if users}


class GroupMessage(Record):
    id: str = Field(default_factory=_new_id)
    event_id: str
    sender_id: str
    sender_name: str = ""
    sender_badge: str | None = None
    content: str
    type: GroupMessageType = GroupMessageType.TEXT
    is_anonymous: bool = False
    created_at: Instant = Field(default_factory=_utcnow)
    is_deleted: bool = False
    deleted_by: str | None = None
    deleted_at: Instant | None = None
    reactions: dict[str, set[str]] = Field(default_factory=dict)

    @field_serializer("reactions")
    def _serialize_reactions(self, reactions: dict[str, set[str]]) -> dict[str, list[str]]:
        return {emoji: sorted(users) for emoji, users in reactions.items() if users}


class Block(Record):
    id: str
    blocker_id: str
    blocked_id: str
    event_id: str | None = None
    is_global: bool = False
    reason: str | None = None
    created_at: Instant = Field(default_factory=_utcnow)

    def applies_to(self, event_id: str | None) -> bool:
        if self.is_global or self.event_id is None or event_id is None:
            return True
        return self.event_id == event_id


class Mute(Record):
    id: str = Field(default_factory=_new_id)
    event_id: str
    user_id: str
    muted_by_user_id: str
    muted_until: Instant | None = None
    created_at: Instant = Field(default_factory=_utcnow)

    def is_active(self, now: datetime) -> bool:
        return self.muted_until is None or self.muted_until > now


class ChatRemoval(Record):
    id: str = Field(default_factory=_new_id)
    event_id: str
    user_id: str
    removed_by_user_id: str
    reason: str | None = None
    created_at: Instant = Field(default_factory=_utcnow)


class Report(Record):
    id: str = Field(default_factory=_new_id)
    reporter_id: str
    reported_id: str
    event_id: str | None = None
    message_id: str | None = None
    category: ReportCategory
    description: str | None = None
    status: ReportStatus = ReportStatus.PENDING
    created_at: Instant = Field(default_factory=_utcnow)
    reviewed_at: Instant | None = None
    reviewed_by: str | None = None
    action: ModerationAction | None = None


class SavedContact(Record):
    id: str
    user_id: str
    contact_user_id: str
    contact_name: str
    contact_avatar: str | None = None
    event_id: str
    event_title: str = ""
    saved_at: Instant = Field(default_factory=_utcnow)
    note: str | None = None


class ReadMarker(Record):
    id: str
    event_id: str
    user_id: str
    last_read_at: Instant


class AuditEntry(Record):
    id: str = Field(default_factory=_new_id)
    action: AuditAction
    actor_id: str
    subject_id: str | None = None
    event_id: str | None = None
    timestamp: Instant = Field(default_factory=_utcnow)
    payload: dict = Field(default_factory=dict)


class Attendee(BaseModel):
    user_id: str
    name: str
    avatar: str | None = None
    badge: str | None = None


class GroupChatInfo(BaseModel):
    event_id: str
    enabled: bool
    phase: EventPhase
    participant_count: int


# ---------------------------------------------------------------------------
# Typing presence
# ---------------------------------------------------------------------------


class TypingIndicator(Record):
    scope: TypingScope
    scope_id: str
    user_id: str
    user_name: str
    timestamp: Instant


class TypingUser(BaseModel):
    user_id: str
    user_name: str


class TypingStatus(BaseModel):
    is_typing: bool = False
    users: list[TypingUser] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Request / Response DTOs
# ---------------------------------------------------------------------------


class InitiateConversationRequest(BaseModel):
    sender_id: str
    recipient_id: str
    event_id: str


class ActorRequest(BaseModel):
    user_id: str


class SendDirectMessageRequest(BaseModel):
    sender_id: str
    content: str = Field(min_length=1)
    type: DirectMessageType = DirectMessageType.TEXT


class SaveContactRequest(BaseModel):
    user_id: str
    contact_user_id: str
    contact_name: str
    contact_avatar: str | None = None
    note: str | None = None


class PostGroupMessageRequest(BaseModel):
    user_id: str
    user_name: str
    content: str = Field(min_length=1)
    type: GroupMessageType = GroupMessageType.TEXT
    badge: str | None = None
    is_anonymous: bool = False


class ReactionRequest(BaseModel):
    user_id: str
    emoji: str = Field(min_length=1)


class MuteRequest(BaseModel):
    user_id: str
    muted_by: str
    duration_minutes: int | None = Field(default=None, gt=0)
    permanent: bool = False


class RemovalRequest(BaseModel):
    user_id: str
    removed_by: str
    reason: str | None = None


class BlockRequest(BaseModel):
    blocker_id: str
    blocked_id: str
    event_id: str | None = None
    is_global: bool = False
    reason: str | None = None


class ReportRequest(BaseModel):
    reporter_id: str
    reported_id: str
    category: ReportCategory
    description: str | None = None
    event_id: str | None = None
    message_id: str | None = None


class ResolveReportRequest(BaseModel):
    reviewer_id: str
    action: ModerationAction | None = None
    dismiss: bool = False


class TypingRequest(BaseModel):
    user_id: str
    user_name: str
    is_typing: bool
