"""Tests for the moderation ledger and its audit trail."""

from __future__ import annotations

from datetime import timedelta

from conftest import EVENT_ID, HOST_ID
from eventsocial.domain.models import AuditAction, ModerationAction, ReportCategory, ReportStatus
from eventsocial.domain.results import Reasons, ResultKind


# ---------------------------------------------------------------------------
# Blocks
# ---------------------------------------------------------------------------


def test_block_is_symmetric(env):
    env.ledger.block("alice", "bob")
    assert env.ledger.is_blocked("alice", "bob")
    assert env.ledger.is_blocked("bob", "alice")
    assert not env.ledger.is_blocked("alice", "carol")


def test_event_scoped_block_only_applies_to_that_event(env):
    env.ledger.block("alice", "bob", event_id=EVENT_ID)
    assert env.ledger.is_blocked("alice", "bob", EVENT_ID)
    assert not env.ledger.is_blocked("alice", "bob", "ev2")


def test_global_block_applies_everywhere(env):
    env.ledger.block("alice", "bob", event_id=EVENT_ID, is_global=True)
    assert env.ledger.is_blocked("alice", "bob", "ev2")


def test_scoped_block_does_not_narrow_global_block(env):
    env.seed_ticket_holders("alice", "bob")
    env.ledger.block("alice", "bob", is_global=True)
    env.ledger.block("alice", "bob", event_id="ev2")
    assert env.ledger.is_blocked("alice", "bob", EVENT_ID)
    assert env.ledger.is_blocked("alice", "bob", "ev2")
    assert env.access.can_initiate_dm("bob", "alice", EVENT_ID).reason == Reasons.CANNOT_MESSAGE_USER


def test_blocks_in_two_events_both_hold(env):
    env.ledger.block("alice", "bob", event_id=EVENT_ID)
    env.ledger.block("alice", "bob", event_id="ev2")
    assert env.ledger.is_blocked("alice", "bob", EVENT_ID)
    assert env.ledger.is_blocked("alice", "bob", "ev2")
    assert not env.ledger.is_blocked("alice", "bob", "ev3")
    assert env.ledger.blocked_users("alice") == ["bob"]


def test_unblock_clears_every_scope(env):
    env.ledger.block("alice", "bob", is_global=True)
    env.ledger.block("alice", "bob", event_id="ev2")
    env.ledger.unblock("alice", "bob")
    assert not env.ledger.is_blocked("alice", "bob", "ev2")
    assert not env.ledger.is_blocked("alice", "bob")


def test_cannot_block_self(env):
    result = env.ledger.block("alice", "alice")
    assert result.reason == Reasons.CANNOT_BLOCK_SELF


def test_unblock_removes_only_own_block(env):
    env.ledger.block("alice", "bob")
    env.ledger.block("bob", "alice")
    env.ledger.unblock("alice", "bob")
    assert env.ledger.is_blocked("alice", "bob")
    env.ledger.unblock("bob", "alice")
    assert not env.ledger.is_blocked("alice", "bob")


def test_blocked_users_listing(env):
    env.ledger.block("alice", "bob")
    env.ledger.block("alice", "carol")
    assert sorted(env.ledger.blocked_users("alice")) == ["bob", "carol"]
    env.store.available = False
    assert env.ledger.blocked_users("alice") == []


def test_block_write_failure_is_transient(env):
    env.store.available = False
    assert env.ledger.block("alice", "bob").kind == ResultKind.TRANSIENT


def test_block_and_unblock_are_audited(env):
    env.ledger.block("alice", "bob", reason="spam")
    env.ledger.unblock("alice", "bob")
    env.ledger.unblock("alice", "bob")
    actions = [e.action for e in env.audit.list_for_actor("alice")]
    assert actions == [AuditAction.BLOCKED, AuditAction.UNBLOCKED]


# ---------------------------------------------------------------------------
# Mutes & removals
# ---------------------------------------------------------------------------


def test_timed_mute_expires(env, clock):
    env.ledger.mute(EVENT_ID, "alice", HOST_ID, timedelta(minutes=10))
    assert env.ledger.is_muted(EVENT_ID, "alice")
    clock.advance(minutes=10)
    assert not env.ledger.is_muted(EVENT_ID, "alice")


def test_permanent_mute(env, clock):
    env.ledger.mute(EVENT_ID, "alice", HOST_ID, None)
    clock.advance(days=365)
    assert env.ledger.is_muted(EVENT_ID, "alice")


def test_unmute(env):
    env.ledger.mute(EVENT_ID, "alice", HOST_ID, None)
    env.ledger.unmute(EVENT_ID, "alice")
    assert not env.ledger.is_muted(EVENT_ID, "alice")


def test_mute_is_per_event(env):
    env.ledger.mute(EVENT_ID, "alice", HOST_ID, None)
    assert not env.ledger.is_muted("ev2", "alice")


def test_removal(env):
    env.ledger.remove(EVENT_ID, "alice", HOST_ID, reason="abuse")
    assert env.ledger.is_removed(EVENT_ID, "alice")
    assert not env.ledger.is_removed(EVENT_ID, "bob")
    entries = env.audit.list_for_event(EVENT_ID)
    assert [e.action for e in entries] == [AuditAction.REMOVED]
    assert entries[0].payload == {"reason": "abuse"}


# ---------------------------------------------------------------------------
# Reports
# ---------------------------------------------------------------------------


def test_report_lifecycle(env, clock):
    filed = env.ledger.report("alice", "bob", ReportCategory.HARASSMENT, "rude", event_id=EVENT_ID)
    assert filed.success
    assert [r.id for r in env.ledger.pending_reports(EVENT_ID)] == [filed.report_id]

    clock.advance(hours=1)
    resolved = env.ledger.resolve_report(filed.report_id, "admin", ModerationAction.WARNED)
    assert resolved.success

    report = env.ledger.get_report(filed.report_id)
    assert report.status == ReportStatus.RESOLVED
    assert report.action == ModerationAction.WARNED
    assert report.reviewed_by == "admin"
    assert report.reviewed_at == clock.now
    assert env.ledger.pending_reports(EVENT_ID) == []


def test_report_cannot_be_resolved_twice(env):
    filed = env.ledger.report("alice", "bob", ReportCategory.SPAM)
    env.ledger.resolve_report(filed.report_id, "admin", dismiss=True)
    assert env.ledger.get_report(filed.report_id).status == ReportStatus.DISMISSED
    again = env.ledger.resolve_report(filed.report_id, "admin")
    assert again.reason == Reasons.REPORT_CLOSED


def test_resolve_unknown_report_is_not_found(env):
    assert env.ledger.resolve_report("missing", "admin").kind == ResultKind.NOT_FOUND


def test_cannot_report_self(env):
    assert env.ledger.report("alice", "alice", ReportCategory.OTHER).reason == Reasons.CANNOT_REPORT_SELF


def test_pending_reports_oldest_first(env, clock):
    first = env.ledger.report("alice", "bob", ReportCategory.SPAM)
    clock.advance(minutes=1)
    second = env.ledger.report("carol", "bob", ReportCategory.SAFETY)
    assert [r.id for r in env.ledger.pending_reports()] == [first.report_id, second.report_id]


def test_reports_are_audited(env):
    filed = env.ledger.report("alice", "bob", ReportCategory.SPAM, event_id=EVENT_ID)
    env.ledger.resolve_report(filed.report_id, "admin", ModerationAction.MUTED)
    assert [e.action for e in env.audit.list_for_actor("alice")] == [AuditAction.REPORT_FILED]
    resolved = env.audit.list_for_actor("admin")
    assert resolved[0].payload == {"action": "muted"}
