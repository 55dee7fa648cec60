"""
Activity log management.

Maintains the append-only record of commands, provisioning and maintenance
runs. Entries are never updated; only retention cleanup deletes them.
"""

import logging
import uuid
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from .database import ActivityLogRepository, Database
from .models import ActivityLogEntry, utcnow

# Payload values longer than this are truncated in the log summary
MAX_SUMMARY_VALUE_LENGTH = 200


def summarize_payload(payload: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Shallow, size-bounded copy of a command payload for the activity log."""
    summary: Dict[str, Any] = {}
    for key, value in (payload or {}).items():
        if isinstance(value, dict) and "videoId" in value:
            summary[key] = {"videoId": value.get("videoId"), "title": value.get("title")}
        elif isinstance(value, (int, float, bool)) or value is None:
            summary[key] = value
        else:
            text = str(value)
            if len(text) > MAX_SUMMARY_VALUE_LENGTH:
                text = text[:MAX_SUMMARY_VALUE_LENGTH] + "..."
            summary[key] = text
    return summary


class ActivityLogManager:
    """
    Manages the activity log.

    Builds entries, records standalone events and enforces retention.
    Command entries are written by the venue repository in the same
    transaction as the state update they describe.
    """

    def __init__(self, database: Database):
        """
        Initialize activity log manager.

        Args:
            database: Database instance for persistence
        """
        self.database = database
        self.repository = ActivityLogRepository(database)
        self.logger = logging.getLogger(__name__)

    @staticmethod
    def build_entry(
        event_type: str,
        event_data: Optional[Dict[str, Any]] = None,
        user_id: Optional[str] = None,
        venue_id: Optional[str] = None,
        timestamp: Optional[datetime] = None,
    ) -> ActivityLogEntry:
        return ActivityLogEntry(
            id=uuid.uuid4().hex,
            event_type=event_type,
            event_data=event_data or {},
            user_id=user_id,
            venue_id=venue_id,
            timestamp=timestamp or utcnow(),
        )

    def record(
        self,
        event_type: str,
        event_data: Optional[Dict[str, Any]] = None,
        user_id: Optional[str] = None,
        venue_id: Optional[str] = None,
    ) -> ActivityLogEntry:
        """Append a standalone event."""
        entry = self.build_entry(event_type, event_data, user_id, venue_id)
        self.repository.append(entry)
        self.logger.debug("Recorded activity %s (venue=%s, user=%s)", event_type, venue_id, user_id)
        return entry

    def get_venue_activity(self, venue_id: str, limit: int = 50) -> List[ActivityLogEntry]:
        """Get the most recent entries for a venue, newest first."""
        return self.repository.list(venue_id=venue_id, limit=limit)

    def get_user_activity(self, user_id: str, limit: int = 50) -> List[ActivityLogEntry]:
        return self.repository.list(user_id=user_id, limit=limit)

    def cleanup(self, retention_days: int, now: Optional[datetime] = None) -> int:
        """
        Delete entries older than the retention horizon.

        Returns:
            Number of entries deleted
        """
        cutoff = (now or utcnow()) - timedelta(days=retention_days)
        deleted = self.repository.delete_before(cutoff)
        if deleted:
            self.logger.info("Cleaned up %s activity entries older than %s", deleted, cutoff)
        return deleted
