"""
Unit Tests - Change Tracker

Tests for status-change detection and highlight expiry.
"""

import pytest
from datetime import datetime, timedelta, timezone

from change_tracker import ChangeTracker, ChangeRecord
from flight_status import FlightStatus
from flight_store import FlightRecord


T0 = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
WINDOW = timedelta(seconds=10)


def flight(flight_id="A", departure=None, pushed=None):
    return FlightRecord(
        id=flight_id,
        departure_time=departure or (T0 + timedelta(minutes=45)),
        flight_number="BA123",
        pushed_status=pushed
    )


@pytest.fixture
def tracker():
    return ChangeTracker(highlight_duration=WINDOW, added_highlight_duration=timedelta(seconds=3))


class TestObserve:
    """Tests for change detection."""

    def test_first_observation_has_no_changes(self, tracker):
        """Test baseline observation opens nothing."""
        opened = tracker.observe([flight()], T0)

        assert opened == []
        assert tracker.is_highlighted("A") is None
        assert tracker.is_freshly_added("A") is False

    def test_pushed_status_change_detected(self, tracker):
        """Test Scheduled -> Boarding via pushed statuses."""
        tracker.observe([flight(pushed=FlightStatus.SCHEDULED)], T0)
        tracker.observe([flight(pushed=FlightStatus.BOARDING)], T0 + timedelta(seconds=5))

        assert tracker.is_highlighted("A") == (FlightStatus.SCHEDULED, FlightStatus.BOARDING)

    def test_time_driven_change_detected(self, tracker):
        """Test computed status changing as time passes."""
        departure = T0 + timedelta(minutes=31)
        tracker.observe([flight(departure=departure)], T0)
        opened = tracker.observe([flight(departure=departure)], T0 + timedelta(minutes=2))

        assert len(opened) == 1
        assert opened[0].as_pair() == (FlightStatus.SCHEDULED, FlightStatus.BOARDING)
        assert opened[0].expires_at == T0 + timedelta(minutes=2) + WINDOW

    def test_no_change_no_highlight(self, tracker):
        """Test identical statuses open nothing."""
        tracker.observe([flight()], T0)
        opened = tracker.observe([flight()], T0 + timedelta(minutes=1))

        assert opened == []
        assert tracker.highlights() == {}

    def test_authoritative_same_as_derived_is_not_a_change(self, tracker):
        """Test a pushed status equal to the computed one is not a change."""
        tracker.observe([flight()], T0)
        tracker.observe([flight(pushed=FlightStatus.SCHEDULED)], T0 + timedelta(seconds=1))

        assert tracker.is_highlighted("A") is None

    def test_unknown_to_scheduled_is_a_change(self, tracker):
        """Test malformed times take part in diffing as Unknown."""
        tracker.observe([flight(departure="not-a-date")], T0)
        tracker.observe([flight(departure=T0 + timedelta(hours=2))], T0 + timedelta(seconds=1))

        assert tracker.is_highlighted("A") == (FlightStatus.UNKNOWN, FlightStatus.SCHEDULED)

    def test_added_flight_marked_not_changed(self, tracker):
        """Test new IDs get the added mark, not a change record."""
        tracker.observe([flight("A")], T0)
        opened = tracker.observe([flight("A"), flight("B")], T0 + timedelta(seconds=1))

        assert opened == []
        assert tracker.is_highlighted("B") is None
        assert tracker.is_freshly_added("B", T0 + timedelta(seconds=2)) is True
        assert tracker.is_freshly_added("B", T0 + timedelta(seconds=4)) is False


class TestExpiry:
    """Tests for the highlight window."""

    def test_expire_after_window(self, tracker):
        """Test expire(now + W + 1ms) clears the record."""
        tracker.observe([flight(pushed=FlightStatus.SCHEDULED)], T0)
        now = T0 + timedelta(seconds=1)
        tracker.observe([flight(pushed=FlightStatus.BOARDING)], now)

        cleared = tracker.expire(now + WINDOW + timedelta(milliseconds=1))

        assert cleared == {"A"}
        assert tracker.is_highlighted("A") is None

    def test_expire_before_window_keeps_record(self, tracker):
        """Test records survive a sweep inside their window."""
        tracker.observe([flight(pushed=FlightStatus.SCHEDULED)], T0)
        tracker.observe([flight(pushed=FlightStatus.BOARDING)], T0)

        assert tracker.expire(T0 + timedelta(seconds=9)) == set()
        assert tracker.is_highlighted("A") is not None

    def test_expire_at_exact_instant(self, tracker):
        """Test expires_at <= now is purged."""
        tracker.observe([flight(pushed=FlightStatus.SCHEDULED)], T0)
        tracker.observe([flight(pushed=FlightStatus.BOARDING)], T0)

        assert tracker.expire(T0 + WINDOW) == {"A"}

    def test_is_highlighted_with_now_hides_expired(self, tracker):
        """Test lookups with now ignore stale records before a sweep."""
        tracker.observe([flight(pushed=FlightStatus.SCHEDULED)], T0)
        tracker.observe([flight(pushed=FlightStatus.BOARDING)], T0)

        assert tracker.is_highlighted("A", T0 + timedelta(seconds=11)) is None
        assert tracker.is_highlighted("A", T0 + timedelta(seconds=5)) is not None

    def test_expire_returns_only_change_ids(self, tracker):
        """Test added marks are purged but not reported."""
        tracker.observe([], T0)
        tracker.observe([flight("B")], T0)

        assert tracker.expire(T0 + timedelta(seconds=5)) == set()
        assert tracker.is_freshly_added("B") is False


class TestRemoval:
    """Tests for removal cancelling pending changes."""

    def test_removed_record_cleared_immediately(self, tracker):
        """Test absence from the next observation drops the change."""
        tracker.observe([flight(pushed=FlightStatus.SCHEDULED)], T0)
        tracker.observe([flight(pushed=FlightStatus.BOARDING)], T0 + timedelta(seconds=1))
        tracker.observe([], T0 + timedelta(seconds=2))

        assert tracker.is_highlighted("A") is None

    def test_stale_expiry_is_noop(self, tracker):
        """Test a heap entry for a removed record does nothing."""
        tracker.observe([flight(pushed=FlightStatus.SCHEDULED)], T0)
        tracker.observe([flight(pushed=FlightStatus.BOARDING)], T0)
        tracker.observe([], T0 + timedelta(seconds=1))

        assert tracker.expire(T0 + timedelta(minutes=1)) == set()

    def test_forget(self, tracker):
        """Test forget cancels the change and the baseline."""
        tracker.observe([flight(pushed=FlightStatus.SCHEDULED)], T0)
        tracker.observe([flight(pushed=FlightStatus.BOARDING)], T0)

        assert tracker.forget("A") is True
        assert tracker.is_highlighted("A") is None
        assert tracker.forget("A") is False

    def test_reset(self, tracker):
        """Test reset drops all state."""
        tracker.observe([flight(pushed=FlightStatus.SCHEDULED)], T0)
        tracker.observe([flight(pushed=FlightStatus.BOARDING)], T0)

        tracker.reset()

        assert tracker.highlights() == {}
        assert tracker.last_observed_at is None
        assert tracker.observe([flight(pushed=FlightStatus.LANDED)], T0) == []


class TestRefresh:
    """Tests for repeated changes within a window."""

    def test_second_change_replaces_first(self, tracker):
        """Test one active record reflecting the latest pair."""
        tracker.observe([flight(pushed=FlightStatus.SCHEDULED)], T0)
        tracker.observe([flight(pushed=FlightStatus.BOARDING)], T0 + timedelta(seconds=2))
        tracker.observe([flight(pushed=FlightStatus.DEPARTED)], T0 + timedelta(seconds=4))

        highlights = tracker.highlights()
        assert list(highlights) == ["A"]
        assert highlights["A"].as_pair() == (FlightStatus.BOARDING, FlightStatus.DEPARTED)
        assert highlights["A"].expires_at == T0 + timedelta(seconds=4) + WINDOW

    def test_replaced_record_outlives_first_window(self, tracker):
        """Test the first window's expiry does not clear the refreshed record."""
        tracker.observe([flight(pushed=FlightStatus.SCHEDULED)], T0)
        tracker.observe([flight(pushed=FlightStatus.BOARDING)], T0)
        tracker.observe([flight(pushed=FlightStatus.DEPARTED)], T0 + timedelta(seconds=5))

        assert tracker.expire(T0 + timedelta(seconds=11)) == set()
        assert tracker.is_highlighted("A") == (FlightStatus.BOARDING, FlightStatus.DEPARTED)
        assert tracker.expire(T0 + timedelta(seconds=15)) == {"A"}


class TestEndToEnd:
    """Scenario across four evaluation instants."""

    def test_three_transitions(self, tracker):
        """Test Scheduled -> Boarding -> Departed -> Landed yields three changes."""
        departure = T0 + timedelta(minutes=45)
        record = flight(departure=departure)
        instants = [
            departure - timedelta(minutes=45),
            departure - timedelta(minutes=15),
            departure + timedelta(minutes=5),
            departure + timedelta(minutes=90),
        ]

        events = []
        for now in instants:
            events.extend(tracker.observe([record], now))

        assert [e.as_pair() for e in events] == [
            (FlightStatus.SCHEDULED, FlightStatus.BOARDING),
            (FlightStatus.BOARDING, FlightStatus.DEPARTED),
            (FlightStatus.DEPARTED, FlightStatus.LANDED),
        ]
        assert all(e.flight_id == "A" for e in events)
        assert [e.expires_at for e in events] == [now + WINDOW for now in instants[1:]]


class TestChangeRecord:
    """Tests for ChangeRecord."""

    def test_to_dict(self):
        """Test API dictionary."""
        record = ChangeRecord(
            flight_id="A",
            previous_status=FlightStatus.SCHEDULED,
            new_status=FlightStatus.BOARDING,
            detected_at=T0,
            expires_at=T0 + WINDOW
        )

        result = record.to_dict()

        assert result["oldStatus"] == "Scheduled"
        assert result["newStatus"] == "Boarding"
        assert result["expiresAt"] == (T0 + WINDOW).isoformat()

    def test_default_durations(self):
        """Test configured defaults."""
        tracker = ChangeTracker()
        assert tracker.highlight_duration == timedelta(seconds=10)
        assert tracker.added_highlight_duration == timedelta(seconds=3)

    def test_zero_duration_override(self):
        """Test an explicit zero window is kept and expires at once."""
        tracker = ChangeTracker(
            highlight_duration=timedelta(0),
            added_highlight_duration=timedelta(0)
        )
        assert tracker.highlight_duration == timedelta(0)
        assert tracker.added_highlight_duration == timedelta(0)

        tracker.observe([flight(pushed=FlightStatus.SCHEDULED)], T0)
        tracker.observe([flight(pushed=FlightStatus.BOARDING)], T0)

        assert tracker.expire(T0) == {"A"}
        assert tracker.is_highlighted("A") is None
