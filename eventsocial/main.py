"""FastAPI application: HTTP facade over the event social layer.

Authentication is handled upstream; the acting user travels in the request
body or query string.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta

from fastapi import FastAPI, HTTPException, Query

from eventsocial.config import SocialSettings, load_settings
from eventsocial.domain.bus import EventBus
from eventsocial.domain.handlers import HandlerRegistry
from eventsocial.domain.models import (
    ActorRequest,
    Attendee,
    BlockRequest,
    Clock,
    Conversation,
    DirectMessage,
    Entitlement,
    GroupChatInfo,
    GroupMessage,
    InitiateConversationRequest,
    MuteRequest,
    PostGroupMessageRequest,
    ReactionRequest,
    RemovalRequest,
    Report,
    ReportRequest,
    ResolveReportRequest,
    SaveContactRequest,
    SavedContact,
    SendDirectMessageRequest,
    TypingRequest,
    TypingScope,
    utcnow,
)
from eventsocial.domain.results import ActionResult, Eligibility, ResultKind
from eventsocial.observability import configure_logging
from eventsocial.repos.documents import (
    AuditRepository,
    ConversationRepository,
    DirectMessageRepository,
    GrantRecordRepository,
    GroupMessageRepository,
    ModerationRepository,
    ReadMarkerRepository,
    SavedContactRepository,
)
from eventsocial.repos.interfaces import BroadcastStore, DocumentStore
from eventsocial.repos.memory import InMemoryBroadcastStore, InMemoryDocumentStore
from eventsocial.services.access import AccessService
from eventsocial.services.conversations import ConversationService, RequestLimits, status_label
from eventsocial.services.entitlements import (
    EntitlementResolver,
    EntitlementUnavailableError,
    default_sources,
)
from eventsocial.services.group_chat import GroupChannel, GroupLimits
from eventsocial.services.moderation import ModerationLedger
from eventsocial.services.phase import PhaseWindows, phase_info
from eventsocial.services.typing import TypingPresence, format_typing_text


@dataclass
class SocialServices:
    settings: SocialSettings
    documents: DocumentStore
    broadcast: BroadcastStore
    bus: EventBus
    records: GrantRecordRepository
    ledger: ModerationLedger
    access: AccessService
    conversations: ConversationService
    group: GroupChannel
    typing: TypingPresence
    audit: AuditRepository
    handlers: HandlerRegistry


def build_services(
    settings: SocialSettings,
    documents: DocumentStore,
    broadcast: BroadcastStore,
    clock: Clock = utcnow,
) -> SocialServices:
    """Wire stores, repositories, bus handlers and services together."""
    timeout = settings.store_timeout_seconds
    bus = EventBus()
    records = GrantRecordRepository(documents, timeout)
    conversation_repo = ConversationRepository(documents, timeout)
    audit_repo = AuditRepository(documents, timeout)

    ledger = ModerationLedger(ModerationRepository(documents, timeout), bus, clock)
    access = AccessService(
        EntitlementResolver(default_sources(records, clock)),
        records,
        ledger,
        PhaseWindows.from_settings(settings),
        clock,
        page_size=settings.attendee_page_size,
    )
    conversations = ConversationService(
        conversation_repo,
        DirectMessageRepository(documents, timeout),
        SavedContactRepository(documents, timeout),
        access,
        bus,
        RequestLimits.from_settings(settings),
        clock,
    )
    group = GroupChannel(
        GroupMessageRepository(documents, timeout),
        ReadMarkerRepository(documents, timeout),
        access,
        bus,
        GroupLimits.from_settings(settings),
        clock,
    )
    handlers = HandlerRegistry(bus=bus, conversation_repo=conversation_repo, audit_repo=audit_repo)
    return SocialServices(
        settings=settings,
        documents=documents,
        broadcast=broadcast,
        bus=bus,
        records=records,
        ledger=ledger,
        access=access,
        conversations=conversations,
        group=group,
        typing=TypingPresence.from_settings(broadcast, settings, clock),
        audit=audit_repo,
        handlers=handlers,
    )


# ── Singletons (created at import time for simplicity) ────────────────
settings = load_settings()
configure_logging(settings)

document_store = InMemoryDocumentStore()
broadcast_store = InMemoryBroadcastStore()
services = build_services(settings, document_store, broadcast_store)

app = FastAPI(title="Event Social Service")

_STATUS_BY_KIND = {
    ResultKind.DENIED: 403,
    ResultKind.NOT_FOUND: 404,
    ResultKind.TRANSIENT: 503,
}


def _unwrap(result: ActionResult) -> ActionResult:
    if not result.success:
        raise HTTPException(status_code=_STATUS_BY_KIND[result.kind], detail=result.model_dump())
    return result


# ── Phase & entitlements ──────────────────────────────────────────────


@app.get("/events/{event_id}/phase")
def get_phase(event_id: str) -> dict:
    """Current social phase of the event with its display label."""
    phase = services.access.event_phase(event_id)
    if phase is None:
        raise HTTPException(status_code=404, detail="Event not found")
    return {"event_id": event_id, "phase": phase, **phase_info(phase)}


@app.get("/events/{event_id}/entitlements/{user_id}", response_model=Entitlement)
def get_entitlement(event_id: str, user_id: str) -> Entitlement:
    try:
        entitlement = services.access.resolve_entitlement(user_id, event_id)
    except EntitlementUnavailableError:
        raise HTTPException(status_code=503, detail="Unable to verify permissions")
    if entitlement is None:
        raise HTTPException(status_code=404, detail="No entitlement for this event")
    return entitlement


@app.get("/events/{event_id}/chat-access", response_model=Eligibility)
def get_chat_access(event_id: str, user_id: str) -> Eligibility:
    return services.access.chat_access(user_id, event_id)


@app.get("/events/{event_id}/dm-eligibility", response_model=Eligibility)
def get_dm_eligibility(event_id: str, sender_id: str, recipient_id: str) -> Eligibility:
    return services.access.can_initiate_dm(sender_id, recipient_id, event_id)


@app.get("/events/{event_id}/attendees", response_model=list[Attendee])
def list_attendees(
    event_id: str,
    viewer_id: str | None = None,
    limit: int | None = Query(default=None, gt=0, le=200),
) -> list[Attendee]:
    return services.access.attendees(event_id, viewer_id, limit)


@app.get("/events/{event_id}/attendees/count")
def count_attendees(event_id: str) -> dict:
    return {"event_id": event_id, "count": services.access.attendee_count(event_id)}


# ── Private conversations ─────────────────────────────────────────────


@app.post("/conversations", response_model=ActionResult)
def initiate_conversation(body: InitiateConversationRequest) -> ActionResult:
    return _unwrap(services.conversations.initiate(body.sender_id, body.recipient_id, body.event_id))


@app.get("/conversations/{conversation_id}")
def get_conversation(conversation_id: str, viewer_id: str) -> dict:
    conversation = services.conversations.get(conversation_id)
    if conversation is None or viewer_id not in conversation.participants:
        raise HTTPException(status_code=404, detail="Conversation not found")
    return {
        "conversation": conversation.model_dump(),
        "status": status_label(conversation, viewer_id),
    }


@app.post("/conversations/{conversation_id}/accept", response_model=ActionResult)
def accept_conversation(conversation_id: str, body: ActorRequest) -> ActionResult:
    return _unwrap(services.conversations.accept(conversation_id, body.user_id))


@app.post("/conversations/{conversation_id}/decline", response_model=ActionResult)
def decline_conversation(conversation_id: str, body: ActorRequest) -> ActionResult:
    return _unwrap(services.conversations.decline(conversation_id, body.user_id))


@app.post("/conversations/{conversation_id}/reopen", response_model=ActionResult)
def reopen_conversation(conversation_id: str, body: ActorRequest) -> ActionResult:
    return _unwrap(services.conversations.reopen(conversation_id, body.user_id))


@app.post("/conversations/{conversation_id}/messages", response_model=ActionResult)
def send_direct_message(conversation_id: str, body: SendDirectMessageRequest) -> ActionResult:
    return _unwrap(
        services.conversations.send_message(conversation_id, body.sender_id, body.content, body.type)
    )


@app.get("/conversations/{conversation_id}/messages", response_model=list[DirectMessage])
def list_direct_messages(
    conversation_id: str,
    viewer_id: str,
    limit: int = Query(default=100, gt=0, le=500),
) -> list[DirectMessage]:
    return services.conversations.messages_for(conversation_id, viewer_id, limit)


@app.post("/conversations/{conversation_id}/read", status_code=204)
def mark_conversation_read(conversation_id: str, body: ActorRequest) -> None:
    services.conversations.mark_read(conversation_id, body.user_id)


@app.post("/direct-messages/{message_id}/reactions", response_model=ActionResult)
def react_to_direct_message(message_id: str, body: ReactionRequest) -> ActionResult:
    return _unwrap(services.conversations.toggle_reaction(message_id, body.user_id, body.emoji))


@app.post("/events/{event_id}/contacts", response_model=ActionResult)
def save_contact(event_id: str, body: SaveContactRequest) -> ActionResult:
    return _unwrap(
        services.conversations.save_contact(
            body.user_id,
            body.contact_user_id,
            body.contact_name,
            event_id,
            contact_avatar=body.contact_avatar,
            note=body.note,
        )
    )


@app.get("/users/{user_id}/conversations", response_model=list[Conversation])
def list_conversations(user_id: str, event_id: str) -> list[Conversation]:
    return services.conversations.conversations_for_event(user_id, event_id)


@app.get("/users/{user_id}/requests", response_model=list[Conversation])
def list_pending_requests(user_id: str) -> list[Conversation]:
    return services.conversations.pending_requests(user_id)


@app.get("/users/{user_id}/unread")
def direct_unread_counts(user_id: str) -> dict[str, int]:
    return services.conversations.unread_counts(user_id)


@app.get("/users/{user_id}/contacts", response_model=list[SavedContact])
def list_saved_contacts(user_id: str) -> list[SavedContact]:
    return services.conversations.saved_contacts(user_id)


# ── Group channel ─────────────────────────────────────────────────────


@app.get("/events/{event_id}/chat", response_model=GroupChatInfo)
def get_group_chat(event_id: str) -> GroupChatInfo:
    info = services.group.info(event_id)
    if info is None:
        raise HTTPException(status_code=404, detail="Event not found")
    return info


@app.get("/events/{event_id}/chat/messages", response_model=list[GroupMessage])
def list_group_messages(
    event_id: str,
    limit: int = Query(default=50, gt=0, le=200),
) -> list[GroupMessage]:
    return services.group.recent_messages(event_id, limit)


@app.post("/events/{event_id}/chat/messages", response_model=ActionResult)
def post_group_message(event_id: str, body: PostGroupMessageRequest) -> ActionResult:
    return _unwrap(
        services.group.post(
            event_id,
            body.user_id,
            body.user_name,
            body.content,
            body.type,
            badge=body.badge,
            is_anonymous=body.is_anonymous,
        )
    )


@app.delete("/chat/messages/{message_id}", response_model=ActionResult)
def delete_group_message(message_id: str, actor_id: str) -> ActionResult:
    return _unwrap(services.group.delete_message(message_id, actor_id))


@app.post("/chat/messages/{message_id}/reactions", response_model=ActionResult)
def react_to_group_message(message_id: str, body: ReactionRequest) -> ActionResult:
    return _unwrap(services.group.toggle_reaction(message_id, body.user_id, body.emoji))


@app.post("/events/{event_id}/chat/mutes", response_model=ActionResult)
def mute_user(event_id: str, body: MuteRequest) -> ActionResult:
    duration = timedelta(minutes=body.duration_minutes) if body.duration_minutes else None
    return _unwrap(
        services.group.mute(event_id, body.user_id, body.muted_by, duration, permanent=body.permanent)
    )


@app.delete("/events/{event_id}/chat/mutes/{user_id}", response_model=ActionResult)
def unmute_user(event_id: str, user_id: str, actor_id: str) -> ActionResult:
    return _unwrap(services.group.unmute(event_id, user_id, actor_id))


@app.post("/events/{event_id}/chat/removals", response_model=ActionResult)
def remove_user(event_id: str, body: RemovalRequest) -> ActionResult:
    return _unwrap(services.group.remove(event_id, body.user_id, body.removed_by, body.reason))


@app.post("/events/{event_id}/chat/read", status_code=204)
def mark_group_read(event_id: str, body: ActorRequest) -> None:
    services.group.mark_read(event_id, body.user_id)


@app.get("/users/{user_id}/chat-unread")
def group_unread_counts(user_id: str, event_ids: list[str] = Query(default=[])) -> dict[str, int]:
    return services.group.unread_counts(user_id, event_ids)


# ── Blocks & reports ──────────────────────────────────────────────────


@app.post("/blocks", response_model=ActionResult)
def block_user(body: BlockRequest) -> ActionResult:
    return _unwrap(
        services.ledger.block(
            body.blocker_id,
            body.blocked_id,
            event_id=body.event_id,
            is_global=body.is_global,
            reason=body.reason,
        )
    )


@app.delete("/blocks/{blocker_id}/{blocked_id}", response_model=ActionResult)
def unblock_user(blocker_id: str, blocked_id: str) -> ActionResult:
    return _unwrap(services.ledger.unblock(blocker_id, blocked_id))


@app.get("/users/{user_id}/blocks")
def list_blocked_users(user_id: str) -> list[str]:
    return services.ledger.blocked_users(user_id)


@app.post("/reports", response_model=ActionResult)
def file_report(body: ReportRequest) -> ActionResult:
    return _unwrap(
        services.ledger.report(
            body.reporter_id,
            body.reported_id,
            body.category,
            description=body.description,
            event_id=body.event_id,
            message_id=body.message_id,
        )
    )


@app.get("/reports", response_model=list[Report])
def list_pending_reports(event_id: str | None = None) -> list[Report]:
    return services.ledger.pending_reports(event_id)


@app.post("/reports/{report_id}/resolve", response_model=ActionResult)
def resolve_report(report_id: str, body: ResolveReportRequest) -> ActionResult:
    return _unwrap(
        services.ledger.resolve_report(report_id, body.reviewer_id, body.action, dismiss=body.dismiss)
    )


# ── Typing presence ───────────────────────────────────────────────────


@app.put("/typing/{scope}/{scope_id}", status_code=204)
def set_typing(scope: TypingScope, scope_id: str, body: TypingRequest) -> None:
    """Fire-and-forget; always succeeds from the caller's point of view."""
    services.typing.set_typing(scope, scope_id, body.user_id, body.user_name, body.is_typing)


@app.get("/typing/{scope}/{scope_id}")
def get_typing(scope: TypingScope, scope_id: str, viewer_id: str | None = None) -> dict:
    status = services.typing.status(scope, scope_id, viewer_id)
    return {**status.model_dump(), "text": format_typing_text(status.users)}
