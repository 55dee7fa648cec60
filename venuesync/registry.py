"""
Room membership for venuesync.

Tracks which connected clients are joined to which venue room. Callers
authorize before calling join(); the registry only enforces isolation.
"""

import logging
import threading
from typing import Dict, Set


def room_name(venue_id: str) -> str:
    return f"venue:{venue_id}"


class SessionRegistry:
    """Thread-safe mapping between clients and venue rooms."""

    def __init__(self):
        self._members: Dict[str, Set[str]] = {}
        self._joined: Dict[str, Set[str]] = {}
        self._lock = threading.Lock()
        self.logger = logging.getLogger(__name__)

    def join(self, client_id: str, venue_id: str) -> bool:
        """
        Add a client to a venue room.

        Returns:
            True if the client was not already a member
        """
        with self._lock:
            members = self._members.setdefault(venue_id, set())
            if client_id in members:
                return False
            members.add(client_id)
            self._joined.setdefault(client_id, set()).add(venue_id)
        self.logger.info("Client %s joined %s", client_id, room_name(venue_id))
        return True

    def leave(self, client_id: str, venue_id: str) -> bool:
        """
        Remove a client from a venue room.

        Returns:
            True if the client was a member
        """
        with self._lock:
            members = self._members.get(venue_id)
            if not members or client_id not in members:
                return False
            members.discard(client_id)
            if not members:
                del self._members[venue_id]
            joined = self._joined.get(client_id)
            if joined is not None:
                joined.discard(venue_id)
                if not joined:
                    del self._joined[client_id]
        self.logger.info("Client %s left %s", client_id, room_name(venue_id))
        return True

    def leave_all(self, client_id: str) -> Set[str]:
        """Remove a client from every room. Returns the venue ids it left."""
        with self._lock:
            venues = self._joined.pop(client_id, set())
            for venue_id in venues:
                members = self._members.get(venue_id)
                if members is not None:
                    members.discard(client_id)
                    if not members:
                        del self._members[venue_id]
        if venues:
            self.logger.info("Client %s left %s room(s)", client_id, len(venues))
        return venues

    def members(self, venue_id: str) -> Set[str]:
        """Snapshot of the clients currently joined to a venue."""
        with self._lock:
            return set(self._members.get(venue_id, ()))

    def venues_for(self, client_id: str) -> Set[str]:
        with self._lock:
            return set(self._joined.get(client_id, ()))

    def is_member(self, client_id: str, venue_id: str) -> bool:
        with self._lock:
            return client_id in self._members.get(venue_id, ())
