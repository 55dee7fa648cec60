"""
Venue management for venuesync.

Creates, looks up and renames venues, answers permission questions and owns
the per-venue locks that serialize state mutations.
"""

import logging
import sqlite3
import threading
import uuid
import weakref
from typing import List, Optional

from .activity import ActivityLogManager
from .config_manager import SyncSettings
from .database import Database, VenueRepository
from .errors import Forbidden, InvalidPayload, NotFound
from .models import Identity, Venue, VenueState, utcnow


class VenueLocks:
    """
    Hands out one lock per venue id.

    A lock lives only while some caller holds a reference to it, so the
    table never outgrows the venues currently being mutated.
    """

    def __init__(self):
        self._locks: "weakref.WeakValueDictionary[str, threading.Lock]" = weakref.WeakValueDictionary()
        self._guard = threading.Lock()

    def get(self, venue_id: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(venue_id)
            if lock is None:
                lock = self._locks[venue_id] = threading.Lock()
            return lock

    def __len__(self) -> int:
        return len(self._locks)


class VenueManager:
    """Manages venue records and per-venue serialization."""

    def __init__(self, database: Database, settings: Optional[SyncSettings] = None):
        """
        Initialize VenueManager.

        Args:
            database: Database instance for persistence
            settings: Resolved service settings
        """
        self.database = database
        self.settings = settings or SyncSettings()
        self.repository = VenueRepository(database)
        self.activity = ActivityLogManager(database)
        self.locks = VenueLocks()
        self.logger = logging.getLogger(__name__)

    def new_venue(self, owner_id: str, name: str = "", venue_id: Optional[str] = None) -> Venue:
        """Build (but do not persist) a fresh idle venue."""
        now = utcnow()
        return Venue(
            id=venue_id or uuid.uuid4().hex,
            owner_id=owner_id,
            name=name,
            state=VenueState.IDLE,
            volume=self.settings.default_volume,
            last_heartbeat_at=now,
            last_updated_at=now,
            created_at=now,
        )

    def create_venue(
        self,
        owner_id: str,
        name: str = "",
        venue_id: Optional[str] = None,
        conn: Optional[sqlite3.Connection] = None,
    ) -> Venue:
        """
        Create a venue owned by owner_id.

        Args:
            owner_id: ID of the creating user
            name: Display name
            venue_id: Explicit ID (generated if omitted)
            conn: Open transaction to join, used by user provisioning

        Returns:
            The created venue
        """
        if not owner_id:
            raise InvalidPayload("Missing owner id")
        venue = self.new_venue(owner_id, name, venue_id)
        entry = self.activity.build_entry(
            "venue_created", {"name": name}, user_id=owner_id, venue_id=venue.id
        )
        if conn is not None:
            self.repository.create(venue, conn)
            self.activity.repository.append(entry, conn)
        else:
            with self.database.transaction() as own:
                self.repository.create(venue, own)
                self.activity.repository.append(entry, own)
        self.logger.info("Created venue %s (%s) for %s", venue.id, name or "unnamed", owner_id)
        return venue

    def get_venue(self, venue_id: str) -> Venue:
        """
        Get a venue.

        Raises:
            NotFound: venue does not exist
        """
        venue = self.repository.get(venue_id)
        if venue is None:
            raise NotFound(f"Venue {venue_id} not found")
        return venue

    def list_venues(self, owner_id: Optional[str] = None) -> List[Venue]:
        """List venues, optionally only those owned by owner_id."""
        return self.repository.list(owner_id)

    def rename_venue(self, venue_id: str, name: str, actor_id: str) -> Venue:
        """Change a venue's display name under the venue lock."""
        if not isinstance(name, str) or not name.strip():
            raise InvalidPayload("Missing venue name")
        with self.locks.get(venue_id):
            venue = self.get_venue(venue_id)
            updated = venue.copy()
            updated.name = name.strip()
            updated.last_updated_at = utcnow()
            entry = self.activity.build_entry(
                "venue_renamed", {"name": updated.name}, user_id=actor_id, venue_id=venue_id
            )
            return self.repository.save(updated, venue.version, entry)

    @staticmethod
    def can_view(identity: Identity, venue: Venue) -> bool:
        """Owners and admins may join a venue's room and command it."""
        return identity.is_admin or venue.owner_id == identity.user_id

    def require_access(self, identity: Identity, venue_id: str) -> Venue:
        """
        Get a venue the identity is permitted to use.

        Raises:
            NotFound: venue does not exist
            Forbidden: identity may not use the venue
        """
        venue = self.get_venue(venue_id)
        if not self.can_view(identity, venue):
            raise Forbidden(f"User {identity.user_id} may not access venue {venue_id}")
        return venue
