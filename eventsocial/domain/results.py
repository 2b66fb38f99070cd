"""Structured outcomes returned to UI callers.

Nothing in the service layer raises for an expected refusal: callers get an
``ActionResult`` (for mutations) or an ``Eligibility`` (for checks) carrying a
reason string they can render as-is.
"""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel


class ResultKind(StrEnum):
    OK = "ok"
    DENIED = "denied"
    NOT_FOUND = "not_found"
    TRANSIENT = "transient"


class Reasons(StrEnum):
    """User-facing reasons for refusals."""

    NO_TICKET = "You need a ticket to join this chat"
    TICKET_INVALID = "Your ticket is no longer valid"
    CHAT_ENDED = "This event chat has ended"
    CHAT_READ_ONLY = "This event chat is read-only now"
    NO_TICKET_TO_CONNECT = "You need a ticket to initiate connections"
    RECIPIENT_NOT_ATTENDING = "This user is not part of this event's community"
    COMMUNITY_ENDED = "Community access for this event has ended"
    CANNOT_MESSAGE_SELF = "You cannot message yourself"
    CANNOT_MESSAGE_USER = "Unable to message this user"
    DAILY_LIMIT = (
        "You've reached your daily limit for new message requests. "
        "Try again tomorrow."
    )
    TOO_MANY_DECLINES = "You've had several declined requests. Try again later."
    CANNOT_ACCEPT_OWN = "You cannot accept your own request"
    NOT_PARTICIPANT = "You are not part of this conversation"
    ALREADY_DECLINED = "This request was already declined"
    ALREADY_ACCEPTED = "This request was already accepted"
    CONVERSATION_BLOCKED = "This conversation is blocked"
    CONVERSATION_INACTIVE = "This conversation is not active"
    CONVERSATION_EXPIRED = "This conversation has expired"
    STILL_BLOCKED = "Unblock this user before reopening the conversation"
    NOT_BLOCKED_STATE = "Only blocked conversations can be reopened"
    CONVERSATION_NOT_FOUND = "Conversation not found"
    MESSAGE_NOT_FOUND = "Message not found"
    REPORT_NOT_FOUND = "Report not found"
    EVENT_NOT_FOUND = "Event not found"
    EMPTY_MESSAGE = "Message cannot be empty"
    MUTED = "You are muted in this chat"
    REMOVED = "You have been removed from this chat"
    RATE_LIMITED = "You're sending messages too quickly"
    ANNOUNCEMENT_FORBIDDEN = "Only hosts and venues can post announcements"
    MODERATOR_ONLY = "Only hosts and venues can moderate this chat"
    CANNOT_DELETE = "You can only delete your own messages"
    MESSAGE_DELETED = "This message was deleted"
    CANNOT_BLOCK_SELF = "You cannot block yourself"
    CANNOT_REPORT_SELF = "You cannot report yourself"
    REPORT_CLOSED = "This report was already handled"
    UNAVAILABLE = "Unable to verify permissions"


class ActionResult(BaseModel):
    """Outcome of a mutating operation."""

    success: bool
    kind: ResultKind = ResultKind.OK
    reason: str | None = None
    conversation_id: str | None = None
    message_id: str | None = None
    report_id: str | None = None

    @classmethod
    def ok(cls, **ids: str | None) -> ActionResult:
        return cls(success=True, **ids)

    @classmethod
    def denied(cls, reason: str) -> ActionResult:
        return cls(success=False, kind=ResultKind.DENIED, reason=str(reason))

    @classmethod
    def not_found(cls, reason: str) -> ActionResult:
        return cls(success=False, kind=ResultKind.NOT_FOUND, reason=str(reason))

    @classmethod
    def transient(cls, reason: str = Reasons.UNAVAILABLE) -> ActionResult:
        return cls(success=False, kind=ResultKind.TRANSIENT, reason=str(reason))


class Eligibility(BaseModel):
    """Outcome of a capability check."""

    allowed: bool
    kind: ResultKind = ResultKind.OK
    reason: str | None = None

    @classmethod
    def allow(cls) -> Eligibility:
        return cls(allowed=True)

    @classmethod
    def deny(cls, reason: str) -> Eligibility:
        return cls(allowed=False, kind=ResultKind.DENIED, reason=str(reason))

    @classmethod
    def unavailable(cls) -> Eligibility:
        return cls(allowed=False, kind=ResultKind.TRANSIENT, reason=str(Reasons.UNAVAILABLE))

    def as_result(self) -> ActionResult:
        return ActionResult(success=self.allowed, kind=self.kind, reason=self.reason)
