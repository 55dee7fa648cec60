"""
Heartbeats and periodic maintenance for venuesync.

Heartbeats keep a venue live; the maintenance sweep marks venues without a
recent heartbeat inactive, trims old activity entries and deactivates idle
users. Neither touches now-playing or the queues, so neither takes the
per-venue command lock.
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from .activity import ActivityLogManager
from .config_manager import SyncSettings
from .database import Database, UserRepository, VenueRepository
from .errors import StoreUnavailable
from .models import Venue, VenueState, utcnow


class HeartbeatMonitor:
    """Records liveness signals from player clients."""

    def __init__(self, database: Database, clock: Callable[[], datetime] = utcnow):
        self.repository = VenueRepository(database)
        self._clock = clock
        self.logger = logging.getLogger(__name__)

    def record(self, venue_id: str) -> Venue:
        """
        Stamp a heartbeat for a venue.

        An inactive venue becomes ready again.

        Raises:
            NotFound: venue does not exist
        """
        venue = self.repository.record_heartbeat(venue_id, self._clock())
        self.logger.debug("Heartbeat for venue %s (state=%s)", venue_id, venue.state.value)
        return venue


@dataclass
class MaintenanceReport:
    """What one sweep changed."""

    inactive_venue_ids: List[str] = field(default_factory=list)
    activity_entries_deleted: int = 0
    users_deactivated: int = 0
    ran_at: Optional[datetime] = None
    errors: List[str] = field(default_factory=list)

    def to_dict(self):
        return {
            "inactiveVenueIds": self.inactive_venue_ids,
            "activityEntriesDeleted": self.activity_entries_deleted,
            "usersDeactivated": self.users_deactivated,
            "ranAt": self.ran_at.isoformat() if self.ran_at else None,
            "errors": self.errors,
        }


class MaintenanceAgent:
    """Runs the maintenance sweep on a background thread."""

    def __init__(
        self,
        database: Database,
        settings: Optional[SyncSettings] = None,
        on_venues_inactive: Optional[Callable[[List[Venue]], None]] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        """
        Initialize MaintenanceAgent.

        Args:
            database: Database instance
            settings: Resolved service settings (timeouts, retention)
            on_venues_inactive: Called with venues the sweep marked inactive
            clock: Source of the current time
        """
        self.settings = settings or SyncSettings()
        self.venues = VenueRepository(database)
        self.users = UserRepository(database)
        self.activity = ActivityLogManager(database)
        self.on_venues_inactive = on_venues_inactive
        self._clock = clock
        self.logger = logging.getLogger(__name__)

        self._thread: Optional[threading.Thread] = None
        self._running = False
        self._stop_event = threading.Event()  # Wakes the thread on stop

    def run_once(self) -> MaintenanceReport:
        """
        Run every maintenance task once.

        Tasks are independent: a failing task is logged and the rest still run.
        """
        now = self._clock()
        report = MaintenanceReport(ran_at=now)

        try:
            cutoff = now - timedelta(seconds=self.settings.heartbeat_timeout_seconds)
            report.inactive_venue_ids = self.venues.mark_stale_inactive(cutoff, now)
            if report.inactive_venue_ids:
                self.logger.info("Marked %s stale venue(s) inactive", len(report.inactive_venue_ids))
        except StoreUnavailable as e:
            self.logger.error("Failed to update venue heartbeats: %s", e)
            report.errors.append(f"venues: {e}")

        try:
            report.activity_entries_deleted = self.activity.cleanup(
                self.settings.activity_retention_days, now
            )
        except StoreUnavailable as e:
            self.logger.error("Failed to clean activity log: %s", e)
            report.errors.append(f"activity_log: {e}")

        try:
            user_cutoff = now - timedelta(days=self.settings.user_inactive_days)
            report.users_deactivated = self.users.mark_inactive_before(user_cutoff)
            if report.users_deactivated:
                self.logger.info("Marked %s user(s) inactive", report.users_deactivated)
        except StoreUnavailable as e:
            self.logger.error("Failed to deactivate idle users: %s", e)
            report.errors.append(f"users: {e}")

        try:
            self.activity.record(
                "maintenance_run",
                {"action": "scheduled_maintenance", **report.to_dict()},
            )
        except StoreUnavailable as e:
            self.logger.error("Failed to log maintenance run: %s", e)
            report.errors.append(f"maintenance_run: {e}")

        if report.inactive_venue_ids and self.on_venues_inactive:
            changed = [
                venue
                for venue in (self.venues.get(venue_id) for venue_id in report.inactive_venue_ids)
                if venue is not None and venue.state == VenueState.INACTIVE
            ]
            self.on_venues_inactive(changed)

        return report

    def start(self):
        """Start the background sweep thread."""
        if self._running:
            return

        self._running = True
        self._stop_event.clear()

        def sweep():
            while self._running:
                try:
                    self.run_once()
                except Exception as e:
                    self.logger.error("Error in maintenance sweep: %s", e, exc_info=True)
                self._stop_event.wait(self.settings.maintenance_interval_seconds)

        self._thread = threading.Thread(target=sweep, daemon=True, name="MaintenanceAgent")
        self._thread.start()
        self.logger.info(
            "Maintenance agent started (every %ss)", self.settings.maintenance_interval_seconds
        )

    def stop(self):
        """Stop the background sweep thread."""
        if not self._running:
            return

        self.logger.info("Stopping maintenance agent...")
        self._running = False
        self._stop_event.set()

        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=2.0)
            if self._thread.is_alive():
                self.logger.warning("Maintenance thread did not stop within timeout")

        self.logger.info("Maintenance agent stopped")

    @property
    def running(self) -> bool:
        return self._running
