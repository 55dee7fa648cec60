"""
Unit tests for VenueManager.
"""

import gc

import pytest

from venuesync.config_manager import SyncSettings
from venuesync.errors import Forbidden, InvalidPayload, NotFound
from venuesync.models import Identity
from venuesync.venues import VenueLocks, VenueManager

OWNER = Identity(user_id="owner-1")
STRANGER = Identity(user_id="stranger-1")
ADMIN = Identity(user_id="admin-1", role="admin")


@pytest.fixture
def venue_manager(temp_db):
    return VenueManager(temp_db)


def test_create_venue_defaults(temp_db):
    manager = VenueManager(temp_db, SyncSettings(default_volume=55))

    venue = manager.create_venue(OWNER.user_id, name="Bar")

    assert venue.volume == 55
    assert venue.version == 0
    assert manager.get_venue(venue.id) == venue


def test_create_venue_requires_owner(venue_manager):
    with pytest.raises(InvalidPayload):
        venue_manager.create_venue("")


def test_get_missing_venue(venue_manager):
    with pytest.raises(NotFound):
        venue_manager.get_venue("nope")


def test_rename_venue(venue_manager):
    venue = venue_manager.create_venue(OWNER.user_id, name="Old")

    renamed = venue_manager.rename_venue(venue.id, "  New Name ", OWNER.user_id)

    assert renamed.name == "New Name"
    assert renamed.version == venue.version + 1
    events = [e.event_type for e in venue_manager.activity.get_venue_activity(venue.id)]
    assert events[0] == "venue_renamed"


def test_rename_requires_name(venue_manager):
    venue = venue_manager.create_venue(OWNER.user_id)
    with pytest.raises(InvalidPayload):
        venue_manager.rename_venue(venue.id, "   ", OWNER.user_id)


def test_require_access(venue_manager):
    venue = venue_manager.create_venue(OWNER.user_id)

    assert venue_manager.require_access(OWNER, venue.id).id == venue.id
    assert venue_manager.require_access(ADMIN, venue.id).id == venue.id
    with pytest.raises(Forbidden):
        venue_manager.require_access(STRANGER, venue.id)
    with pytest.raises(NotFound):
        venue_manager.require_access(OWNER, "nope")


def test_locks_are_per_venue():
    locks = VenueLocks()
    lock_a = locks.get("a")
    assert locks.get("a") is lock_a
    assert locks.get("b") is not lock_a


def test_unused_locks_are_released():
    locks = VenueLocks()
    held = locks.get("a")
    locks.get("b")
    gc.collect()

    assert len(locks) == 1
    assert locks.get("a") is held

    del held
    gc.collect()
    assert len(locks) == 0
