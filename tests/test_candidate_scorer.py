"""Tests for the candidate scorer: rules, trigger precedence, ranking and selection."""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from trainercrm.models import Booking, Contact, Insight
from trainercrm.services.candidate_scorer import (
    DraftCandidate,
    SignalSnapshot,
    Trigger,
    load_signals,
    rank_candidates,
    score_contact,
    score_snapshot,
    select_top_candidates,
    selection_size,
)
from trainercrm.services.errors import SignalFetchError

NOW = datetime(2026, 3, 2, 15, 0, tzinfo=timezone.utc)


def _contact(days_since_message=1, contact_id=None, **kwargs):
    last = NOW - timedelta(days=days_since_message) if days_since_message is not None else None
    contact = Contact(
        trainer_id="t1",
        first_name=kwargs.pop("first_name", "Jamie"),
        last_name=kwargs.pop("last_name", "Lee"),
        last_message_sent_at=last,
        **kwargs,
    )
    if contact_id:
        contact.id = contact_id
    return contact


def _insight(contact, risk=10, missed=0, sessions=3, inactive_days=None):
    return Insight(
        trainer_id="t1",
        contact_id=contact.id,
        risk_score=risk,
        missed_sessions=missed,
        total_sessions=sessions,
        last_activity_at=NOW - timedelta(days=inactive_days) if inactive_days is not None else None,
    )


def _booking(contact, hours_ahead, status="scheduled"):
    return Booking(
        trainer_id="t1",
        contact_id=contact.id,
        scheduled_at=NOW + timedelta(hours=hours_ahead),
        status=status,
    )


class TestTrigger:
    def test_precedence_order(self):
        assert [t.value for t in Trigger] == [
            "high_risk",
            "re_engagement",
            "missed_session",
            "booking_reminder",
            "milestone",
            "long_inactive",
            "general_check_in",
        ]

    def test_parse_known(self):
        assert Trigger.parse("milestone") is Trigger.MILESTONE

    def test_parse_unknown_falls_back(self):
        assert Trigger.parse("birthday") is Trigger.GENERAL_CHECK_IN
        assert Trigger.parse("") is Trigger.GENERAL_CHECK_IN


class TestScoreContact:
    def test_no_rule_fired_excluded(self):
        contact = _contact(days_since_message=1)
        insight = _insight(contact, risk=10, sessions=3, inactive_days=1)
        assert score_contact(contact, insight, [], now=NOW) is None

    def test_no_insight_recent_message_excluded(self):
        assert score_contact(_contact(days_since_message=0), None, [], now=NOW) is None

    def test_high_risk_example(self):
        contact = _contact(days_since_message=4)
        insight = _insight(contact, risk=90, missed=0, sessions=3)
        candidate = score_contact(contact, insight, [], now=NOW)
        assert candidate.priority == 170  # 100 + (50 + 5*4)
        assert candidate.trigger is Trigger.HIGH_RISK
        assert candidate.reasons == ["High risk score: 90", "4 days since last message"]
        assert candidate.contact_name == "Jamie Lee"

    def test_risk_threshold_is_strict(self):
        contact = _contact(days_since_message=0)
        assert score_contact(contact, _insight(contact, risk=75), [], now=NOW) is None

    def test_never_messaged_counts_as_long_gap(self):
        contact = _contact(days_since_message=None)
        candidate = score_contact(contact, None, [], now=NOW)
        assert candidate.priority == 50 + 999 * 5
        assert candidate.trigger is Trigger.RE_ENGAGEMENT
        assert candidate.reasons == ["999 days since last message"]

    def test_message_gap_below_three_days(self):
        contact = _contact(days_since_message=2)
        assert score_contact(contact, None, [], now=NOW) is None

    def test_partial_days_are_floored(self):
        contact = _contact(days_since_message=None)
        contact.last_message_sent_at = NOW - timedelta(days=2, hours=23)
        assert score_contact(contact, None, [], now=NOW) is None

    def test_missed_session_trigger(self):
        contact = _contact(days_since_message=1)
        candidate = score_contact(contact, _insight(contact, missed=2), [], now=NOW)
        assert candidate.priority == 40
        assert candidate.trigger is Trigger.MISSED_SESSION
        assert candidate.reasons == ["2 missed sessions"]

    def test_re_engagement_beats_missed_session(self):
        contact = _contact(days_since_message=3)
        candidate = score_contact(contact, _insight(contact, missed=1), [], now=NOW)
        assert candidate.priority == 65 + 40
        assert candidate.trigger is Trigger.RE_ENGAGEMENT

    def test_booking_within_24_hours(self):
        contact = _contact(days_since_message=1)
        candidate = score_contact(contact, None, [_booking(contact, 5)], now=NOW)
        assert candidate.priority == 60
        assert candidate.trigger is Trigger.BOOKING_REMINDER
        assert candidate.reasons == ["Session scheduled within 24 hours"]

    def test_booking_counted_once(self):
        contact = _contact(days_since_message=1)
        bookings = [_booking(contact, 2), _booking(contact, 8)]
        assert score_contact(contact, None, bookings, now=NOW).priority == 60

    @pytest.mark.parametrize("hours_ahead", [24, 30, -1])
    def test_booking_outside_window_ignored(self, hours_ahead):
        contact = _contact(days_since_message=1)
        assert score_contact(contact, None, [_booking(contact, hours_ahead)], now=NOW) is None

    def test_cancelled_booking_ignored(self):
        contact = _contact(days_since_message=1)
        booking = _booking(contact, 3, status="cancelled")
        assert score_contact(contact, None, [booking], now=NOW) is None

    def test_missed_session_beats_booking(self):
        contact = _contact(days_since_message=1)
        candidate = score_contact(
            contact, _insight(contact, missed=1), [_booking(contact, 3)], now=NOW
        )
        assert candidate.priority == 100
        assert candidate.trigger is Trigger.MISSED_SESSION

    def test_milestone(self):
        contact = _contact(days_since_message=1)
        candidate = score_contact(contact, _insight(contact, sessions=10), [], now=NOW)
        assert candidate.priority == 30
        assert candidate.trigger is Trigger.MILESTONE
        assert candidate.reasons == ["Milestone: 10 sessions completed"]

    def test_zero_sessions_is_not_a_milestone(self):
        contact = _contact(days_since_message=1)
        assert score_contact(contact, _insight(contact, sessions=0), [], now=NOW) is None

    def test_long_inactive(self):
        contact = _contact(days_since_message=1)
        candidate = score_contact(contact, _insight(contact, inactive_days=6), [], now=NOW)
        assert candidate.priority == 35 + 6 * 3
        assert candidate.trigger is Trigger.LONG_INACTIVE
        assert candidate.reasons == ["6 days inactive"]

    def test_milestone_beats_long_inactive(self):
        contact = _contact(days_since_message=1)
        candidate = score_contact(
            contact, _insight(contact, sessions=5, inactive_days=10), [], now=NOW
        )
        assert candidate.priority == 30 + 35 + 30
        assert candidate.trigger is Trigger.MILESTONE

    def test_all_rules_sum(self):
        contact = _contact(days_since_message=3)
        insight = _insight(contact, risk=80, missed=1, sessions=15, inactive_days=5)
        candidate = score_contact(contact, insight, [_booking(contact, 1)], now=NOW)
        assert candidate.priority == 100 + 65 + 40 + 60 + 30 + 50
        assert candidate.trigger is Trigger.HIGH_RISK
        assert len(candidate.reasons) == 6

    def test_naive_timestamps_treated_as_utc(self):
        contact = _contact(days_since_message=None)
        contact.last_message_sent_at = (NOW - timedelta(days=4)).replace(tzinfo=None)
        assert score_contact(contact, None, [], now=NOW).priority == 70


def _candidate(contact_id, priority):
    return DraftCandidate(contact_id=contact_id, contact_name=contact_id, priority=priority, reasons=["x"])


class TestSelection:
    @pytest.mark.parametrize(
        "count, expected",
        [(0, 0), (1, 1), (2, 2), (4, 4), (5, 5), (7, 5), (20, 5)],
    )
    def test_selection_size(self, count, expected):
        assert selection_size(count) == expected

    def test_single_candidate_not_padded(self):
        assert len(select_top_candidates([_candidate("a", 10)])) == 1

    def test_top_five_of_seven(self):
        candidates = [_candidate(f"c{i}", p) for i, p in enumerate([10, 70, 30, 90, 50, 20, 80])]
        selected = select_top_candidates(candidates)
        assert [c.priority for c in selected] == [90, 80, 70, 50, 30]

    def test_ties_broken_by_contact_id(self):
        ranked = rank_candidates([_candidate("b", 50), _candidate("c", 60), _candidate("a", 50)])
        assert [c.contact_id for c in ranked] == ["c", "a", "b"]

    def test_score_snapshot_drops_zero_priority(self):
        busy = _contact(days_since_message=None, contact_id="busy")
        quiet = _contact(days_since_message=0, contact_id="quiet")
        snapshot = SignalSnapshot(trainer_id="t1", contacts=[busy, quiet])
        candidates = score_snapshot(snapshot, now=NOW)
        assert [c.contact_id for c in candidates] == ["busy"]

    def test_candidate_to_dict(self):
        data = _candidate("a", 5).to_dict()
        assert data["trigger"] == "general_check_in"
        assert data["reasons"] == ["x"]


class TestLoadSignals:
    @pytest.mark.asyncio
    async def test_only_consented_contacts_and_future_bookings(self, db, make_contact, trainer):
        active = await make_contact(
            first_name="Active",
            insight={"risk_score": 80},
            bookings=[(NOW + timedelta(hours=3), "scheduled"), (NOW - timedelta(days=1), "completed")],
        )
        await make_contact(first_name="Gone", consent_status="opted_out")
        await make_contact(first_name="Maybe", consent_status="pending")

        snapshot = await load_signals(db, trainer.id, now=NOW)
        assert [c.id for c in snapshot.contacts] == [active.id]
        assert snapshot.insights[active.id].risk_score == 80
        assert len(snapshot.bookings[active.id]) == 1

    @pytest.mark.asyncio
    async def test_other_trainers_ignored(self, db, make_contact):
        await make_contact()
        snapshot = await load_signals(db, "someone-else", now=NOW)
        assert snapshot.contacts == []

    @pytest.mark.asyncio
    async def test_database_error_raises_signal_fetch_error(self):
        db = MagicMock()
        db.execute = AsyncMock(side_effect=OperationalError("SELECT", {}, Exception("db down")))
        with pytest.raises(SignalFetchError):
            await load_signals(db, "t1", now=NOW)
