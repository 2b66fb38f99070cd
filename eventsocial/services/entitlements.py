"""Entitlement resolution: which grant, if any, lets a user into an event.

Grants are never stored by this layer. Each request walks an ordered list of
independent grant sources and returns the first active match:

1. confirmed / checked-in order   -> ticket_purchased (ticket_claimed if transferred)
2. approved guestlist entry       -> guestlist_approved
3. transferred order              -> ticket_claimed
4. event organizer or partner     -> host
5. venue owner                    -> venue
6. claimed share-bundle slot      -> couple_ticket / group_ticket_share

Callers re-resolve on every capability check; grants can be revoked at any
time by refunds or transfers.
"""

from __future__ import annotations

import abc

import structlog

from eventsocial.domain.models import (
    Attendee,
    Clock,
    Entitlement,
    EntitlementType,
    utcnow,
)
from eventsocial.repos.documents import GrantRecordRepository
from eventsocial.repos.interfaces import StoreUnavailableError

logger = structlog.get_logger(__name__)

REVOKED_ORDER_STATUSES = frozenset({"cancelled", "refunded"})


class EntitlementUnavailableError(Exception):
    """Entitlement is unknown because a grant source could not be read.

    Gating callers must treat this exactly like "no entitlement".
    """


class GrantSource(abc.ABC):
    """One independent way a user can be entitled to an event."""

    def __init__(self, records: GrantRecordRepository, clock: Clock = utcnow) -> None:
        self.records = records
        self.clock = clock

    @abc.abstractmethod
    def try_resolve(self, user_id: str, event_id: str) -> Entitlement | None:
        """Return the grant this source provides, or None to defer to the next."""


class PurchasedOrderSource(GrantSource):
    def try_resolve(self, user_id: str, event_id: str) -> Entitlement | None:
        orders = self.records.valid_orders(user_id, event_id)
        if not orders:
            return None
        order = orders[0]
        return Entitlement(
            id=order.id,
            user_id=user_id,
            event_id=event_id,
            type=(
                EntitlementType.TICKET_CLAIMED
                if order.transferred_from
                else EntitlementType.TICKET_PURCHASED
            ),
            ticket_tier=order.tier_name,
            order_id=order.id,
            granted_at=order.created_at or self.clock(),
        )


class GuestlistSource(GrantSource):
    def try_resolve(self, user_id: str, event_id: str) -> Entitlement | None:
        entries = self.records.approved_guestlist(user_id, event_id)
        if not entries:
            return None
        entry = entries[0]
        return Entitlement(
            id=entry.id,
            user_id=user_id,
            event_id=event_id,
            type=EntitlementType.GUESTLIST_APPROVED,
            granted_at=entry.approved_at or entry.created_at or self.clock(),
        )


class ClaimedTicketSource(GrantSource):
    """Transferred orders, looked up without the status filter of source #1."""

    def try_resolve(self, user_id: str, event_id: str) -> Entitlement | None:
        orders = [
            o
            for o in self.records.transferred_orders(user_id, event_id)
            if o.status not in REVOKED_ORDER_STATUSES
        ]
        if not orders:
            return None
        order = orders[0]
        return Entitlement(
            id=order.id,
            user_id=user_id,
            event_id=event_id,
            type=EntitlementType.TICKET_CLAIMED,
            ticket_tier=order.tier_name,
            order_id=order.id,
            granted_at=order.created_at or self.clock(),
        )


class HostSource(GrantSource):
    def try_resolve(self, user_id: str, event_id: str) -> Entitlement | None:
        event = self.records.get_event(event_id)
        if event is None or user_id not in (event.organizer_id, event.partner_id):
            return None
        return Entitlement(
            id=f"host_{user_id}_{event_id}",
            user_id=user_id,
            event_id=event_id,
            type=EntitlementType.HOST,
            granted_at=self.clock(),
        )


class VenueSource(GrantSource):
    def try_resolve(self, user_id: str, event_id: str) -> Entitlement | None:
        event = self.records.get_event(event_id)
        if event is None or event.venue_owner_id is None or event.venue_owner_id != user_id:
            return None
        return Entitlement(
            id=f"venue_{user_id}_{event_id}",
            user_id=user_id,
            event_id=event_id,
            type=EntitlementType.VENUE,
            granted_at=self.clock(),
        )


class TicketAssignmentSource(GrantSource):
    """Slots claimed from a shared group or couple ticket bundle."""

    def try_resolve(self, user_id: str, event_id: str) -> Entitlement | None:
        assignments = self.records.active_assignments(user_id, event_id)
        if not assignments:
            return None
        assignment = assignments[0]
        return Entitlement(
            id=assignment.id,
            user_id=user_id,
            event_id=event_id,
            type=(
                EntitlementType.COUPLE_TICKET
                if assignment.couple_pair_id
                else EntitlementType.GROUP_TICKET_SHARE
            ),
            order_id=assignment.order_id,
            granted_at=assignment.created_at or self.clock(),
        )


def default_sources(records: GrantRecordRepository, clock: Clock = utcnow) -> list[GrantSource]:
    """Grant sources in precedence order."""
    return [
        PurchasedOrderSource(records, clock),
        GuestlistSource(records, clock),
        ClaimedTicketSource(records, clock),
        HostSource(records, clock),
        VenueSource(records, clock),
        TicketAssignmentSource(records, clock),
    ]


class EntitlementResolver:
    """Walks grant sources in order; the first active grant wins."""

    def __init__(self, sources: list[GrantSource]) -> None:
        self.sources = sources

    def resolve(self, user_id: str, event_id: str) -> Entitlement | None:
        """Return the strongest active entitlement, or None.

        Raises:
            EntitlementUnavailableError: If any consulted source could not be read.
        """
        for source in self.sources:
            try:
                entitlement = source.try_resolve(user_id, event_id)
            except StoreUnavailableError as exc:
                logger.warning(
                    "entitlement_source_unavailable",
                    source=type(source).__name__,
                    user_id=user_id,
                    event_id=event_id,
                    error=str(exc),
                )
                raise EntitlementUnavailableError(str(exc)) from exc
            if entitlement is not None and entitlement.is_active:
                return entitlement
        return None


class AttendeeDirectory:
    """Best-effort attendee listings; an unreachable store yields empty results."""

    def __init__(self, records: GrantRecordRepository) -> None:
        self.records = records

    def attendees(
        self,
        event_id: str,
        limit: int = 50,
        hidden_user_ids: set[str] | None = None,
    ) -> list[Attendee]:
        hidden = hidden_user_ids or set()
        try:
            event = self.records.get_event(event_id)
            rows = self.records.public_attendees(event_id)
        except StoreUnavailableError:
            logger.warning("attendee_listing_unavailable", event_id=event_id)
            return []

        hosts = {event.organizer_id, event.partner_id} - {None} if event else set()
        venue = event.venue_owner_id if event else None
        seen: set[str] = set()
        result: list[Attendee] = []
        for row in rows:
            if row.user_id in hidden or row.user_id in seen:
                continue
            seen.add(row.user_id)
            badge = "host" if row.user_id in hosts else "venue" if row.user_id == venue else None
            result.append(
                Attendee(user_id=row.user_id, name=row.user_name, avatar=row.user_avatar, badge=badge)
            )
            if len(result) >= limit:
                break
        return result

    def attendee_count(self, event_id: str) -> int:
        try:
            return len({row.user_id for row in self.records.public_attendees(event_id)})
        except StoreUnavailableError:
            logger.warning("attendee_count_unavailable", event_id=event_id)
            return 0

    def participant_count(self, event_id: str) -> int:
        try:
            return len(self.records.ticket_holder_ids(event_id))
        except StoreUnavailableError:
            return 0
