"""
Unit tests for HeartbeatMonitor and MaintenanceAgent.
"""

import time
from datetime import timedelta
from unittest.mock import Mock, patch

import pytest

from venuesync.config_manager import SyncSettings
from venuesync.errors import NotFound, StoreUnavailable
from venuesync.maintenance import HeartbeatMonitor, MaintenanceAgent
from venuesync.models import Identity, VenueState, utcnow
from venuesync.user import UserManager
from venuesync.venues import VenueManager


class FakeClock:
    """Settable clock for driving timeouts."""

    def __init__(self):
        self.now = utcnow()

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def venue_manager(temp_db):
    return VenueManager(temp_db)


@pytest.fixture
def settings():
    return SyncSettings(heartbeat_timeout_seconds=60, maintenance_interval_seconds=0.01)


@pytest.fixture
def monitor(temp_db, clock):
    return HeartbeatMonitor(temp_db, clock=clock)


@pytest.fixture
def agent(temp_db, settings, clock):
    return MaintenanceAgent(temp_db, settings, clock=clock)


def test_heartbeat_timeout_and_recovery(venue_manager, monitor, agent, clock):
    """A venue without heartbeats goes inactive; the next heartbeat makes it ready."""
    venue = venue_manager.create_venue("owner-1")
    monitor.record(venue.id)

    clock.advance(seconds=30)
    assert agent.run_once().inactive_venue_ids == []

    clock.advance(seconds=61)
    report = agent.run_once()
    assert report.inactive_venue_ids == [venue.id]
    assert venue_manager.get_venue(venue.id).state == VenueState.INACTIVE

    revived = monitor.record(venue.id)
    assert revived.state == VenueState.READY
    assert venue_manager.get_venue(venue.id).state == VenueState.READY


def test_heartbeat_unknown_venue(monitor):
    with pytest.raises(NotFound):
        monitor.record("ghost")


def test_sweep_leaves_playback_untouched(venue_manager, monitor, agent, clock, make_track):
    venue = venue_manager.create_venue("owner-1")
    playing = venue.copy()
    playing.now_playing = make_track(1)
    playing.active_queue = [make_track(2)]
    playing.state = VenueState.PLAYING
    venue_manager.repository.save(playing, venue.version)
    monitor.record(venue.id)

    clock.advance(minutes=5)
    agent.run_once()

    stored = venue_manager.get_venue(venue.id)
    assert stored.state == VenueState.INACTIVE
    assert stored.now_playing == make_track(1)
    assert stored.active_queue == [make_track(2)]


def test_callback_receives_inactive_venues(temp_db, venue_manager, monitor, settings, clock):
    callback = Mock()
    agent = MaintenanceAgent(temp_db, settings, on_venues_inactive=callback, clock=clock)
    venue = venue_manager.create_venue("owner-1")
    monitor.record(venue.id)

    clock.advance(minutes=2)
    agent.run_once()

    callback.assert_called_once()
    (venues,), _ = callback.call_args
    assert [v.id for v in venues] == [venue.id]
    assert venues[0].state == VenueState.INACTIVE


def test_activity_retention(venue_manager, agent, clock):
    venue = venue_manager.create_venue("owner-1")
    entry = venue_manager.activity.build_entry(
        "pause", venue_id=venue.id, timestamp=clock.now - timedelta(days=31)
    )
    venue_manager.activity.repository.append(entry)

    report = agent.run_once()

    assert report.activity_entries_deleted == 1
    remaining = [e.event_type for e in venue_manager.activity.get_venue_activity(venue.id)]
    assert remaining == ["venue_created"]


def test_idle_users_deactivated(temp_db, venue_manager, agent, clock):
    users = UserManager(temp_db, venue_manager)
    users.get_or_create_user(Identity(user_id="u1"))

    clock.advance(days=31)
    report = agent.run_once()

    assert report.users_deactivated == 1
    assert users.get_user("u1").is_active is False


def test_run_is_logged(venue_manager, agent):
    agent.run_once()

    entries = venue_manager.activity.repository.list(event_type="maintenance_run")
    assert len(entries) == 1
    assert entries[0].event_data["action"] == "scheduled_maintenance"


def test_failing_task_does_not_stop_others(venue_manager, agent, clock):
    venue = venue_manager.create_venue("owner-1")
    clock.advance(hours=1)

    with patch.object(agent.activity, "cleanup", side_effect=StoreUnavailable("locked")):
        report = agent.run_once()

    assert report.inactive_venue_ids == [venue.id]
    assert len(report.errors) == 1
    assert report.errors[0].startswith("activity_log")


def test_background_thread(agent):
    agent.run_once = Mock(wraps=agent.run_once)

    agent.start()
    assert agent.running
    deadline = time.time() + 2.0
    while agent.run_once.call_count < 2 and time.time() < deadline:
        time.sleep(0.01)
    agent.stop()

    assert not agent.running
    assert agent.run_once.call_count >= 2
