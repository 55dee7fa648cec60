"""
Unit tests for UserManager.
"""

import pytest

from venuesync.models import Identity, VenueState
from venuesync.user import UserManager
from venuesync.venues import VenueManager

ALICE = Identity(user_id="alice-uuid-1234", role="user", email="alice@example.com")
BOB = Identity(user_id="bob-uuid-5678")


@pytest.fixture
def venue_manager(temp_db):
    return VenueManager(temp_db)


@pytest.fixture
def user_manager(temp_db, venue_manager):
    """Create a UserManager instance for testing."""
    return UserManager(temp_db, venue_manager)


class TestUserManager:
    """Tests for UserManager."""

    def test_create_new_user(self, user_manager, venue_manager):
        """Test creating a new user provisions a personal venue."""
        user = user_manager.get_or_create_user(ALICE)

        assert user.id == ALICE.user_id
        assert user.email == "alice@example.com"
        assert user.is_active is True

        venue = venue_manager.get_venue(user.venue_id)
        assert venue.owner_id == ALICE.user_id
        assert venue.name == "alice's venue"
        assert venue.state == VenueState.IDLE
        assert venue.volume == 80
        assert venue.active_queue == []

    def test_get_existing_user(self, user_manager, venue_manager):
        """Test a second login reuses the user and venue."""
        first = user_manager.get_or_create_user(ALICE)
        second = user_manager.get_or_create_user(ALICE)

        assert second.id == first.id
        assert second.venue_id == first.venue_id
        assert len(venue_manager.list_venues(ALICE.user_id)) == 1

    def test_default_venue_name_without_email(self, user_manager, venue_manager):
        user = user_manager.get_or_create_user(BOB)
        assert venue_manager.get_venue(user.venue_id).name == "My venue"

    def test_role_refreshed_on_login(self, user_manager):
        user_manager.get_or_create_user(BOB)
        user = user_manager.get_or_create_user(Identity(user_id=BOB.user_id, role="admin"))
        assert user.role == "admin"

    def test_login_reactivates_user(self, user_manager):
        user = user_manager.get_or_create_user(ALICE)
        user_manager.repository.database.update_document("users", user.id, {"is_active": 0})

        assert user_manager.get_or_create_user(ALICE).is_active is True

    def test_provisioning_is_logged(self, user_manager, venue_manager):
        user = user_manager.get_or_create_user(ALICE)

        events = [e.event_type for e in venue_manager.activity.get_user_activity(user.id)]
        assert "user_provisioned" in events
        assert "venue_created" in events

    def test_get_user_exists(self, user_manager):
        user_manager.get_or_create_user(ALICE)
        assert user_manager.get_user(ALICE.user_id).email == "alice@example.com"

    def test_get_user_not_exists(self, user_manager):
        assert user_manager.get_user("nonexistent") is None

    def test_user_persistence(self, temp_db):
        """Test that users persist across manager instances."""
        um1 = UserManager(temp_db, VenueManager(temp_db))
        created = um1.get_or_create_user(ALICE)

        um2 = UserManager(temp_db, VenueManager(temp_db))
        assert um2.get_user(ALICE.user_id).venue_id == created.venue_id
