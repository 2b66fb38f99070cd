"""Domain events emitted by the social layer."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel

from eventsocial.domain.models import ModerationAction


class UserBlocked(BaseModel):
    """Fired after a block record is written."""

    blocker_id: str
    blocked_id: str
    event_id: str | None = None
    is_global: bool = False
    occurred_at: datetime


class UserUnblocked(BaseModel):
    blocker_id: str
    blocked_id: str
    occurred_at: datetime


class ConversationRequested(BaseModel):
    conversation_id: str
    event_id: str
    sender_id: str
    recipient_id: str


class ConversationAccepted(BaseModel):
    conversation_id: str
    accepted_by: str


class ConversationDeclined(BaseModel):
    conversation_id: str
    declined_by: str


class DirectMessageSent(BaseModel):
    """Fired after a DM is stored; drives the conversation's lastMessage summary."""

    conversation_id: str
    message_id: str
    sender_id: str
    content: str
    sent_at: datetime


class GroupMessagePosted(BaseModel):
    event_id: str
    message_id: str
    sender_id: str
    is_announcement: bool = False


class GroupMessageDeleted(BaseModel):
    event_id: str
    message_id: str
    deleted_by: str
    occurred_at: datetime


class UserMuted(BaseModel):
    event_id: str
    user_id: str
    muted_by: str
    muted_until: datetime | None = None
    occurred_at: datetime


class UserRemovedFromChat(BaseModel):
    event_id: str
    user_id: str
    removed_by: str
    reason: str | None = None
    occurred_at: datetime


class ReportFiled(BaseModel):
    report_id: str
    reporter_id: str
    reported_id: str
    event_id: str | None = None
    category: str
    occurred_at: datetime


class ReportResolved(BaseModel):
    report_id: str
    reviewed_by: str
    action: ModerationAction | None = None
    occurred_at: datetime
