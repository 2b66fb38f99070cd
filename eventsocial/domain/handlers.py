"""Domain event handlers, wired up at application startup."""

from __future__ import annotations

import structlog

from eventsocial.domain.bus import EventBus
from eventsocial.domain.events import (
    DirectMessageSent,
    GroupMessageDeleted,
    ReportFiled,
    ReportResolved,
    UserBlocked,
    UserMuted,
    UserRemovedFromChat,
    UserUnblocked,
)
from eventsocial.domain.models import AuditAction, AuditEntry, ConversationStatus
from eventsocial.repos.documents import AuditRepository, ConversationRepository
from eventsocial.repos.interfaces import DocumentNotFoundError, StoreUnavailableError

logger = structlog.get_logger(__name__)

_BLOCKABLE = (ConversationStatus.PENDING, ConversationStatus.ACCEPTED)

# Preview text kept on the conversation for list rendering.
PREVIEW_LENGTH = 100


class HandlerRegistry:
    """Wires domain-event handlers to the bus with access to the repositories they touch."""

    def __init__(
        self,
        bus: EventBus,
        conversation_repo: ConversationRepository,
        audit_repo: AuditRepository,
    ) -> None:
        self.bus = bus
        self.conversation_repo = conversation_repo
        self.audit_repo = audit_repo
        self._register()

    def _register(self) -> None:
        self.bus.subscribe(UserBlocked, self.on_user_blocked)
        self.bus.subscribe(UserUnblocked, self.on_user_unblocked)
        self.bus.subscribe(DirectMessageSent, self.on_direct_message_sent)
        self.bus.subscribe(GroupMessageDeleted, self.on_group_message_deleted)
        self.bus.subscribe(UserMuted, self.on_user_muted)
        self.bus.subscribe(UserRemovedFromChat, self.on_user_removed)
        self.bus.subscribe(ReportFiled, self.on_report_filed)
        self.bus.subscribe(ReportResolved, self.on_report_resolved)

    def _audit(self, entry: AuditEntry) -> None:
        try:
            self.audit_repo.add(entry)
        except StoreUnavailableError:
            logger.warning("audit_write_failed", action=entry.action.value, actor_id=entry.actor_id)

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    def on_user_blocked(self, event: UserBlocked) -> None:
        # 1. Move live conversations between the pair to blocked. Anything
        #    missed here is caught by the block check on the next interaction.
        scope = None if event.is_global else event.event_id
        try:
            shared = self.conversation_repo.between(event.blocker_id, event.blocked_id)
            for conversation in shared:
                if conversation.status not in _BLOCKABLE:
                    continue
                if scope is not None and conversation.event_id != scope:
                    continue
                self.conversation_repo.update(
                    conversation.id, status=ConversationStatus.BLOCKED.value
                )
        except StoreUnavailableError:
            logger.warning("block_side_effect_deferred", blocker_id=event.blocker_id)

        # 2. Audit
        self._audit(
            AuditEntry(
                action=AuditAction.BLOCKED,
                actor_id=event.blocker_id,
                subject_id=event.blocked_id,
                event_id=event.event_id,
                timestamp=event.occurred_at,
                payload={"is_global": event.is_global},
            )
        )

    def on_user_unblocked(self, event: UserUnblocked) -> None:
        self._audit(
            AuditEntry(
                action=AuditAction.UNBLOCKED,
                actor_id=event.blocker_id,
                subject_id=event.blocked_id,
                timestamp=event.occurred_at,
            )
        )

    def on_direct_message_sent(self, event: DirectMessageSent) -> None:
        try:
            self.conversation_repo.update(
                event.conversation_id,
                lastMessage={
                    "content": event.content[:PREVIEW_LENGTH],
                    "senderId": event.sender_id,
                    "createdAt": event.sent_at,
                },
            )
        except (StoreUnavailableError, DocumentNotFoundError):
            logger.warning("last_message_update_failed", conversation_id=event.conversation_id)

    def on_group_message_deleted(self, event: GroupMessageDeleted) -> None:
        self._audit(
            AuditEntry(
                action=AuditAction.MESSAGE_DELETED,
                actor_id=event.deleted_by,
                subject_id=event.message_id,
                event_id=event.event_id,
                timestamp=event.occurred_at,
            )
        )

    def on_user_muted(self, event: UserMuted) -> None:
        self._audit(
            AuditEntry(
                action=AuditAction.MUTED,
                actor_id=event.muted_by,
                subject_id=event.user_id,
                event_id=event.event_id,
                timestamp=event.occurred_at,
                payload={"muted_until": event.muted_until.isoformat() if event.muted_until else None},
            )
        )

    def on_user_removed(self, event: UserRemovedFromChat) -> None:
        self._audit(
            AuditEntry(
                action=AuditAction.REMOVED,
                actor_id=event.removed_by,
                subject_id=event.user_id,
                event_id=event.event_id,
                timestamp=event.occurred_at,
                payload={"reason": event.reason},
            )
        )

    def on_report_filed(self, event: ReportFiled) -> None:
        self._audit(
            AuditEntry(
                action=AuditAction.REPORT_FILED,
                actor_id=event.reporter_id,
                subject_id=event.reported_id,
                event_id=event.event_id,
                timestamp=event.occurred_at,
                payload={"report_id": event.report_id, "category": event.category},
            )
        )

    def on_report_resolved(self, event: ReportResolved) -> None:
        self._audit(
            AuditEntry(
                action=AuditAction.REPORT_RESOLVED,
                actor_id=event.reviewed_by,
                subject_id=event.report_id,
                timestamp=event.occurred_at,
                payload={"action": event.action.value if event.action else None},
            )
        )
