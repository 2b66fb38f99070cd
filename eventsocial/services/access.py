"""Capability gates combining the ledger, entitlements and the event phase.

Every check runs in the same order: moderation ledger, entitlement resolver,
phase resolver. A store failure anywhere along the way fails closed with a
``transient`` eligibility so the UI can tell a network error from a refusal.
"""

from __future__ import annotations

import structlog

from eventsocial.domain.models import (
    Attendee,
    Clock,
    Entitlement,
    EventPhase,
    EventRecord,
    utcnow,
)
from eventsocial.domain.results import Eligibility, Reasons
from eventsocial.repos.documents import GrantRecordRepository
from eventsocial.repos.interfaces import StoreUnavailableError
from eventsocial.services.entitlements import (
    AttendeeDirectory,
    EntitlementResolver,
    EntitlementUnavailableError,
)
from eventsocial.services.moderation import ModerationLedger
from eventsocial.services.phase import (
    DEFAULT_WINDOWS,
    PhaseWindows,
    can_access_chat,
    compute_phase,
)

logger = structlog.get_logger(__name__)


class AccessService:
    def __init__(
        self,
        resolver: EntitlementResolver,
        records: GrantRecordRepository,
        ledger: ModerationLedger,
        windows: PhaseWindows = DEFAULT_WINDOWS,
        clock: Clock = utcnow,
        page_size: int = 50,
    ) -> None:
        self.resolver = resolver
        self.records = records
        self.ledger = ledger
        self.windows = windows
        self.clock = clock
        self.page_size = page_size
        self.directory = AttendeeDirectory(records)

    # ------------------------------------------------------------------
    # Building blocks
    # ------------------------------------------------------------------

    def resolve_entitlement(self, user_id: str, event_id: str) -> Entitlement | None:
        """Raises EntitlementUnavailableError when the grant sources are unreachable."""
        return self.resolver.resolve(user_id, event_id)

    def get_event(self, event_id: str) -> EventRecord | None:
        return self.records.get_event(event_id)

    def phase_for(self, event: EventRecord) -> EventPhase:
        return compute_phase(event.start_date, self.clock(), self.windows)

    def event_phase(self, event_id: str) -> EventPhase | None:
        """Current phase, or None when the event is unknown or unreachable."""
        try:
            event = self.records.get_event(event_id)
        except StoreUnavailableError:
            return None
        return self.phase_for(event) if event else None

    # ------------------------------------------------------------------
    # Gates
    # ------------------------------------------------------------------

    def chat_access(self, user_id: str, event_id: str) -> Eligibility:
        """Whether ``user_id`` may read and post in the event's group chat."""
        try:
            if self.ledger.is_removed(event_id, user_id):
                return Eligibility.deny(Reasons.REMOVED)
            entitlement = self.resolver.resolve(user_id, event_id)
            event = self.records.get_event(event_id)
        except (StoreUnavailableError, EntitlementUnavailableError):
            return Eligibility.unavailable()
        if event is None:
            return Eligibility.deny(Reasons.EVENT_NOT_FOUND)
        return can_access_chat(entitlement, self.phase_for(event))

    def can_initiate_dm(self, sender_id: str, recipient_id: str, event_id: str) -> Eligibility:
        """Whether ``sender_id`` may open a private conversation with ``recipient_id``."""
        if sender_id == recipient_id:
            return Eligibility.deny(Reasons.CANNOT_MESSAGE_SELF)
        try:
            if self.ledger.is_blocked(sender_id, recipient_id, event_id):
                return Eligibility.deny(Reasons.CANNOT_MESSAGE_USER)

            sender = self.resolver.resolve(sender_id, event_id)
            if sender is None:
                return Eligibility.deny(Reasons.NO_TICKET_TO_CONNECT)
            recipient = self.resolver.resolve(recipient_id, event_id)
            if recipient is None:
                return Eligibility.deny(Reasons.RECIPIENT_NOT_ATTENDING)

            event = self.records.get_event(event_id)
        except (StoreUnavailableError, EntitlementUnavailableError):
            logger.warning("dm_permission_check_unavailable", sender_id=sender_id, event_id=event_id)
            return Eligibility.unavailable()

        if event is None:
            return Eligibility.deny(Reasons.EVENT_NOT_FOUND)
        if self.phase_for(event) in (EventPhase.ARCHIVED, EventPhase.EXPIRED):
            return Eligibility.deny(Reasons.COMMUNITY_ENDED)
        return Eligibility.allow()

    # ------------------------------------------------------------------
    # Listings
    # ------------------------------------------------------------------

    def attendees(self, event_id: str, viewer_id: str | None = None, limit: int | None = None) -> list[Attendee]:
        """Attendees as seen by ``viewer_id``.

        The viewer and anyone blocked in either direction are left out. Empty
        when the store cannot be reached.
        """
        hidden: set[str] = set()
        if viewer_id is not None:
            try:
                hidden = {viewer_id} | {
                    b.blocked_id if b.blocker_id == viewer_id else b.blocker_id
                    for b in self.ledger.repo.blocks_involving(viewer_id)
                    if b.applies_to(event_id)
                }
            except StoreUnavailableError:
                logger.warning("attendee_block_filter_unavailable", event_id=event_id)
                return []
        return self.directory.attendees(event_id, limit=limit or self.page_size, hidden_user_ids=hidden)

    def attendee_count(self, event_id: str) -> int:
        return self.directory.attendee_count(event_id)
