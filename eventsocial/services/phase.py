"""Lifecycle phase of an event's social space.

All windows are half-open and measured from the scheduled start::

    start - 7d        start       start + 12h     + 72h          + 7d
    ----|-------PRE-----|----LIVE----|----AFTER----|---ARCHIVED---|---- EXPIRED
    EXPIRED (not yet open)

A boundary instant belongs to the later window.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

from eventsocial.config import SocialSettings
from eventsocial.domain.models import Entitlement, EventPhase
from eventsocial.domain.results import Eligibility, Reasons

INTERACTIVE_PHASES = frozenset({EventPhase.PRE, EventPhase.LIVE, EventPhase.AFTER})


@dataclass(frozen=True)
class PhaseWindows:
    pre_event: timedelta = timedelta(days=7)
    duration: timedelta = timedelta(hours=12)
    after_event: timedelta = timedelta(hours=72)
    archive: timedelta = timedelta(days=7)

    @classmethod
    def from_settings(cls, settings: SocialSettings) -> PhaseWindows:
        return cls(
            pre_event=settings.pre_event_window,
            duration=settings.event_duration,
            after_event=settings.after_event_window,
            archive=settings.archive_window,
        )


DEFAULT_WINDOWS = PhaseWindows()


def event_end(event_start: datetime, windows: PhaseWindows = DEFAULT_WINDOWS) -> datetime:
    """Assumed end of the event itself (start + fixed duration)."""
    return event_start + windows.duration


def compute_phase(
    event_start: datetime,
    now: datetime,
    windows: PhaseWindows = DEFAULT_WINDOWS,
) -> EventPhase:
    """Map an event start and the current instant to exactly one phase."""
    opens = event_start - windows.pre_event
    ends = event_start + windows.duration
    after_ends = ends + windows.after_event
    archive_ends = after_ends + windows.archive

    if now < opens:
        return EventPhase.EXPIRED
    if now < event_start:
        return EventPhase.PRE
    if now < ends:
        return EventPhase.LIVE
    if now < after_ends:
        return EventPhase.AFTER
    if now < archive_ends:
        return EventPhase.ARCHIVED
    return EventPhase.EXPIRED


def is_interactive(phase: EventPhase) -> bool:
    return phase in INTERACTIVE_PHASES


def is_read_only(phase: EventPhase) -> bool:
    return phase == EventPhase.ARCHIVED


def can_access_chat(entitlement: Entitlement | None, phase: EventPhase) -> Eligibility:
    """Whether the holder of ``entitlement`` may use the event chat in ``phase``."""
    if entitlement is None:
        return Eligibility.deny(Reasons.NO_TICKET)
    if not entitlement.is_active:
        return Eligibility.deny(Reasons.TICKET_INVALID)
    if phase in (EventPhase.ARCHIVED, EventPhase.EXPIRED):
        return Eligibility.deny(Reasons.CHAT_ENDED)
    return Eligibility.allow()


_PHASE_INFO = {
    EventPhase.PRE: ("PRE", "Connect & coordinate before the party."),
    EventPhase.LIVE: ("LIVE", "Real-time updates & venue news."),
    EventPhase.AFTER: ("AFTER", "Relive the night, share photos & connect."),
    EventPhase.ARCHIVED: ("PAST", "Read-only archive."),
    EventPhase.EXPIRED: ("ENDED", "This chat has ended."),
}


def phase_info(phase: EventPhase) -> dict[str, str]:
    label, description = _PHASE_INFO[phase]
    return {"label": label, "description": description}
