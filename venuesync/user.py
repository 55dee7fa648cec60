"""
User management for venuesync.

Provisions users lazily on first authentication, together with their
personal venue.
"""

import logging
import sqlite3
from typing import Optional

from .database import Database, UserRepository
from .models import Identity, User, utcnow
from .venues import VenueManager


class UserManager:
    """Manages user records and their home venues."""

    def __init__(self, database: Database, venue_manager: VenueManager):
        """
        Initialize UserManager.

        Args:
            database: Database instance for persistence
            venue_manager: VenueManager used to create personal venues
        """
        self.database = database
        self.venue_manager = venue_manager
        self.repository = UserRepository(database)
        self.logger = logging.getLogger(__name__)

    def get_or_create_user(self, identity: Identity) -> User:
        """
        Get or create the user for a verified identity.

        A new user gets a personal venue created in the same transaction.
        An existing user has their activity timestamp (and role) refreshed,
        which also re-activates users the maintenance sweep marked inactive.

        Args:
            identity: Verified identity from the identity provider

        Returns:
            User object
        """
        user = self.repository.get_by_id(identity.user_id)
        if user:
            self.repository.touch(user.id, utcnow(), role=identity.role)
            return self.repository.get_by_id(user.id)

        now = utcnow()
        try:
            with self.database.transaction() as conn:
                venue = self.venue_manager.create_venue(
                    identity.user_id, name=self._default_venue_name(identity), conn=conn
                )
                user = User(
                    id=identity.user_id,
                    email=identity.email,
                    venue_id=venue.id,
                    role=identity.role,
                    is_active=True,
                    created_at=now,
                    last_activity_at=now,
                )
                self.repository.create(user, conn)
                self.venue_manager.activity.repository.append(
                    self.venue_manager.activity.build_entry(
                        "user_provisioned",
                        {"email": identity.email, "role": identity.role},
                        user_id=user.id,
                        venue_id=venue.id,
                    ),
                    conn,
                )
        except sqlite3.IntegrityError:
            # Another request provisioned the same user first; its venue won
            self.logger.info("User %s provisioned concurrently, reusing record", identity.user_id)
            return self.repository.get_by_id(identity.user_id)

        self.logger.info("Provisioned user %s with venue %s", user.id, user.venue_id)
        return user

    def get_user(self, user_id: str) -> Optional[User]:
        """
        Get a user by ID.

        Returns:
            User object, or None if not found
        """
        return self.repository.get_by_id(user_id)

    @staticmethod
    def _default_venue_name(identity: Identity) -> str:
        if identity.email:
            return f"{identity.email.split('@')[0]}'s venue"
        return "My venue"
