"""Shared fixtures: fresh in-memory stores and services on a manual clock."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from eventsocial.config import SocialSettings
from eventsocial.main import build_services
from eventsocial.repos.documents import (
    EVENTS,
    GUESTLIST,
    ORDERS,
    PUBLIC_ATTENDEES,
    TICKET_ASSIGNMENTS,
)
from eventsocial.repos.memory import InMemoryBroadcastStore, InMemoryDocumentStore

NOW = datetime(2026, 6, 1, 12, 0, tzinfo=timezone.utc)
EVENT_ID = "ev1"
HOST_ID = "host"
VENUE_ID = "venue"


class ManualClock:
    def __init__(self, now: datetime = NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class Env:
    """Services plus seeding helpers for the raw ticketing records."""

    def __init__(self, clock: ManualClock, settings: SocialSettings | None = None) -> None:
        self.clock = clock
        self.store = InMemoryDocumentStore()
        self.broadcast = InMemoryBroadcastStore()
        self.services = build_services(settings or SocialSettings(), self.store, self.broadcast, clock)
        self.access = self.services.access
        self.ledger = self.services.ledger
        self.conversations = self.services.conversations
        self.group = self.services.group
        self.typing = self.services.typing
        self.audit = self.services.audit
        self.bus = self.services.bus

    def seed_event(self, event_id: str = EVENT_ID, start: datetime | None = None, **fields) -> None:
        doc = {
            "title": "Warehouse Night",
            "startDate": start or NOW + timedelta(days=1),
            "organizerId": HOST_ID,
            "partnerId": None,
            "venueOwnerId": VENUE_ID,
        }
        doc.update(fields)
        self.store.set(EVENTS, event_id, doc)

    def seed_order(
        self,
        user_id: str,
        event_id: str = EVENT_ID,
        status: str = "confirmed",
        transferred_from: str | None = None,
        order_id: str | None = None,
    ) -> str:
        order_id = order_id or f"order_{user_id}_{event_id}"
        self.store.set(
            ORDERS,
            order_id,
            {
                "userId": user_id,
                "eventId": event_id,
                "status": status,
                "transferredFrom": transferred_from,
                "tickets": [{"tierName": "General"}],
                "createdAt": NOW - timedelta(days=3),
            },
        )
        return order_id

    def seed_guest(self, user_id: str, event_id: str = EVENT_ID, status: str = "approved") -> None:
        self.store.set(
            GUESTLIST,
            f"guest_{user_id}_{event_id}",
            {"userId": user_id, "eventId": event_id, "status": status, "approvedAt": NOW},
        )

    def seed_assignment(
        self,
        user_id: str,
        event_id: str = EVENT_ID,
        couple_pair_id: str | None = None,
        status: str = "active",
    ) -> None:
        self.store.set(
            TICKET_ASSIGNMENTS,
            f"assign_{user_id}_{event_id}",
            {
                "userId": user_id,
                "eventId": event_id,
                "orderId": "bundle",
                "status": status,
                "couplePairId": couple_pair_id,
            },
        )

    def seed_attendee(self, user_id: str, event_id: str = EVENT_ID, name: str | None = None) -> None:
        self.store.set(
            PUBLIC_ATTENDEES,
            f"att_{user_id}_{event_id}",
            {"userId": user_id, "eventId": event_id, "type": "purchase", "userName": name or user_id.title()},
        )

    def seed_ticket_holders(self, *user_ids: str, event_id: str = EVENT_ID) -> None:
        for user_id in user_ids:
            self.seed_order(user_id, event_id)
            self.seed_attendee(user_id, event_id)

    def connect(self, a: str, b: str, event_id: str = EVENT_ID) -> str:
        """Create and accept a conversation from ``a`` to ``b``."""
        result = self.conversations.initiate(a, b, event_id)
        assert result.success, result
        accepted = self.conversations.accept(result.conversation_id, b)
        assert accepted.success, accepted
        return result.conversation_id


@pytest.fixture()
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture()
def env(clock: ManualClock) -> Env:
    """Fresh stores, bus, handlers and services for each test."""
    e = Env(clock)
    e.seed_event()
    return e
