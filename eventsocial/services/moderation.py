"""Moderation ledger: blocks, mutes, chat removals and reports.

Checks (``is_blocked``, ``is_muted``, ``is_removed``) let store failures
propagate so the gating caller can fail closed. Mutations return an
``ActionResult``; listings degrade to empty on store failure.
"""

from __future__ import annotations

from datetime import timedelta

import structlog

from eventsocial.domain.bus import EventBus
from eventsocial.domain.events import (
    ReportFiled,
    ReportResolved,
    UserBlocked,
    UserMuted,
    UserRemovedFromChat,
    UserUnblocked,
)
from eventsocial.domain.models import (
    Block,
    ChatRemoval,
    Clock,
    ModerationAction,
    Mute,
    Report,
    ReportCategory,
    ReportStatus,
    utcnow,
)
from eventsocial.domain.results import ActionResult, Reasons
from eventsocial.repos.documents import ModerationRepository
from eventsocial.repos.interfaces import StoreUnavailableError

logger = structlog.get_logger(__name__)


class ModerationLedger:
    def __init__(
        self,
        repo: ModerationRepository,
        bus: EventBus,
        clock: Clock = utcnow,
    ) -> None:
        self.repo = repo
        self.bus = bus
        self.clock = clock

    # ------------------------------------------------------------------
    # Checks
    # ------------------------------------------------------------------

    def is_blocked(self, user_a: str, user_b: str, event_id: str | None = None) -> bool:
        """True if either user has blocked the other.

        Event-scoped blocks only count for that event; global blocks and blocks
        without an event count everywhere. With no ``event_id`` every block
        counts.
        """
        return any(b.applies_to(event_id) for b in self.repo.blocks_between(user_a, user_b))

    def is_muted(self, event_id: str, user_id: str) -> bool:
        now = self.clock()
        return any(m.is_active(now) for m in self.repo.mutes_for(event_id, user_id))

    def is_removed(self, event_id: str, user_id: str) -> bool:
        return bool(self.repo.removals_for(event_id, user_id))

    # ------------------------------------------------------------------
    # Blocks
    # ------------------------------------------------------------------

    def block(
        self,
        blocker_id: str,
        blocked_id: str,
        event_id: str | None = None,
        is_global: bool = False,
        reason: str | None = None,
    ) -> ActionResult:
        if blocker_id == blocked_id:
            return ActionResult.denied(Reasons.CANNOT_BLOCK_SELF)
        now = self.clock()
        block = Block(
            id=self.repo.block_id(blocker_id, blocked_id, event_id, is_global),
            blocker_id=blocker_id,
            blocked_id=blocked_id,
            event_id=event_id,
            is_global=is_global,
            reason=reason,
            created_at=now,
        )
        try:
            self.repo.put_block(block)
        except StoreUnavailableError as exc:
            logger.warning("block_write_failed", blocker_id=blocker_id, error=str(exc))
            return ActionResult.transient()

        logger.info("user_blocked", blocker_id=blocker_id, blocked_id=blocked_id, event_id=event_id)
        self.bus.publish(
            UserBlocked(
                blocker_id=blocker_id,
                blocked_id=blocked_id,
                event_id=event_id,
                is_global=is_global,
                occurred_at=now,
            )
        )
        return ActionResult.ok()

    def unblock(self, blocker_id: str, blocked_id: str) -> ActionResult:
        """Remove the blocker's own block. Conversations stay ``blocked``."""
        try:
            removed = self.repo.delete_block(blocker_id, blocked_id)
        except StoreUnavailableError as exc:
            logger.warning("unblock_failed", blocker_id=blocker_id, error=str(exc))
            return ActionResult.transient()
        if removed:
            logger.info("user_unblocked", blocker_id=blocker_id, blocked_id=blocked_id)
            self.bus.publish(
                UserUnblocked(blocker_id=blocker_id, blocked_id=blocked_id, occurred_at=self.clock())
            )
        return ActionResult.ok()

    def blocked_users(self, user_id: str) -> list[str]:
        try:
            return list(dict.fromkeys(b.blocked_id for b in self.repo.blocks_by(user_id)))
        except StoreUnavailableError:
            logger.warning("blocked_users_unavailable", user_id=user_id)
            return []

    # ------------------------------------------------------------------
    # Mutes & removals
    # ------------------------------------------------------------------

    def mute(
        self,
        event_id: str,
        user_id: str,
        muted_by: str,
        duration: timedelta | None,
    ) -> ActionResult:
        """Suppress posting for ``duration``; ``None`` mutes permanently."""
        now = self.clock()
        mute = Mute(
            event_id=event_id,
            user_id=user_id,
            muted_by_user_id=muted_by,
            muted_until=now + duration if duration is not None else None,
            created_at=now,
        )
        try:
            self.repo.add_mute(mute)
        except StoreUnavailableError:
            logger.warning("mute_write_failed", event_id=event_id, user_id=user_id)
            return ActionResult.transient()
        logger.info("user_muted", event_id=event_id, user_id=user_id, muted_until=mute.muted_until)
        self.bus.publish(
            UserMuted(
                event_id=event_id,
                user_id=user_id,
                muted_by=muted_by,
                muted_until=mute.muted_until,
                occurred_at=now,
            )
        )
        return ActionResult.ok()

    def unmute(self, event_id: str, user_id: str) -> ActionResult:
        try:
            for mute in self.repo.mutes_for(event_id, user_id):
                self.repo.delete_mute(mute.id)
        except StoreUnavailableError:
            return ActionResult.transient()
        return ActionResult.ok()

    def remove(
        self,
        event_id: str,
        user_id: str,
        removed_by: str,
        reason: str | None = None,
    ) -> ActionResult:
        now = self.clock()
        removal = ChatRemoval(
            event_id=event_id,
            user_id=user_id,
            removed_by_user_id=removed_by,
            reason=reason,
            created_at=now,
        )
        try:
            self.repo.add_removal(removal)
        except StoreUnavailableError:
            logger.warning("removal_write_failed", event_id=event_id, user_id=user_id)
            return ActionResult.transient()
        logger.info("user_removed_from_chat", event_id=event_id, user_id=user_id)
        self.bus.publish(
            UserRemovedFromChat(
                event_id=event_id,
                user_id=user_id,
                removed_by=removed_by,
                reason=reason,
                occurred_at=now,
            )
        )
        return ActionResult.ok()

    # ------------------------------------------------------------------
    # Reports
    # ------------------------------------------------------------------

    def report(
        self,
        reporter_id: str,
        reported_id: str,
        category: ReportCategory,
        description: str | None = None,
        event_id: str | None = None,
        message_id: str | None = None,
    ) -> ActionResult:
        if reporter_id == reported_id:
            return ActionResult.denied(Reasons.CANNOT_REPORT_SELF)
        now = self.clock()
        report = Report(
            reporter_id=reporter_id,
            reported_id=reported_id,
            event_id=event_id,
            message_id=message_id,
            category=category,
            description=description,
            created_at=now,
        )
        try:
            self.repo.add_report(report)
        except StoreUnavailableError:
            logger.warning("report_write_failed", reporter_id=reporter_id)
            return ActionResult.transient()
        logger.info("report_filed", report_id=report.id, category=str(category), event_id=event_id)
        self.bus.publish(
            ReportFiled(
                report_id=report.id,
                reporter_id=reporter_id,
                reported_id=reported_id,
                event_id=event_id,
                category=str(category),
                occurred_at=now,
            )
        )
        return ActionResult.ok(report_id=report.id)

    def get_report(self, report_id: str) -> Report | None:
        try:
            return self.repo.get_report(report_id)
        except StoreUnavailableError:
            return None

    def pending_reports(self, event_id: str | None = None) -> list[Report]:
        try:
            return self.repo.pending_reports(event_id)
        except StoreUnavailableError:
            logger.warning("pending_reports_unavailable", event_id=event_id)
            return []

    def resolve_report(
        self,
        report_id: str,
        reviewer_id: str,
        action: ModerationAction | None = None,
        dismiss: bool = False,
    ) -> ActionResult:
        try:
            report = self.repo.get_report(report_id)
            if report is None:
                return ActionResult.not_found(Reasons.REPORT_NOT_FOUND)
            if report.status in (ReportStatus.RESOLVED, ReportStatus.DISMISSED):
                return ActionResult.denied(Reasons.REPORT_CLOSED)
            now = self.clock()
            status = ReportStatus.DISMISSED if dismiss else ReportStatus.RESOLVED
            self.repo.update_report(
                report_id,
                status=status.value,
                reviewedAt=now,
                reviewedBy=reviewer_id,
                action=action.value if action else None,
            )
        except StoreUnavailableError:
            return ActionResult.transient()

        logger.info("report_resolved", report_id=report_id, status=str(status), action=action)
        self.bus.publish(
            ReportResolved(report_id=report_id, reviewed_by=reviewer_id, action=action, occurred_at=now)
        )
        return ActionResult.ok(report_id=report_id)
