"""
Main entry point for venuesync.

Initializes all components and starts the server.
"""

import argparse
import logging
from typing import Optional

import uvicorn

from .broadcast import StateBroadcaster
from .commands import CommandProcessor
from .config_manager import ConfigManager
from .database import Database
from .identity import IdentityClient
from .maintenance import HeartbeatMonitor, MaintenanceAgent
from .registry import SessionRegistry
from .user import UserManager
from .venues import VenueManager
from .web.server import create_app

logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

logger = logging.getLogger(__name__)


class VenueSyncServer:
    """Main server class that orchestrates all components."""

    def __init__(
        self,
        db_path: Optional[str] = None,
        identity_endpoint: Optional[str] = None,
        identity_project_id: Optional[str] = None,
    ):
        """
        Initialize all components.

        Args:
            db_path: SQLite database path (default ~/.venuesync/venuesync.db)
            identity_endpoint: Identity provider base URL, overrides config
            identity_project_id: Identity provider project id, overrides config
        """
        logger.info("Initializing venuesync server...")

        # Initialize database and configuration
        self.database = Database(db_path)
        self.config_manager = ConfigManager(self.database)
        self.settings = self.config_manager.settings()
        self.database.timeout = self.settings.store_timeout_seconds

        endpoint = identity_endpoint or self.settings.identity_endpoint
        if not endpoint:
            raise ValueError(
                "Identity endpoint not configured. Set VENUESYNC_IDENTITY_ENDPOINT "
                "or pass --identity-endpoint."
            )
        self.identity_client = IdentityClient(
            endpoint,
            identity_project_id or self.settings.identity_project_id,
            timeout=self.settings.store_timeout_seconds,
        )

        # Venue, user and command handling
        self.venue_manager = VenueManager(self.database, self.settings)
        self.user_manager = UserManager(self.database, self.venue_manager)
        self.command_processor = CommandProcessor(self.venue_manager, self.settings)

        # Real-time fan-out
        self.registry = SessionRegistry()
        self.broadcaster = StateBroadcaster(
            self.registry, queue_size=self.settings.broadcast_queue_size
        )

        # Liveness and maintenance
        self.heartbeat_monitor = HeartbeatMonitor(self.database)
        self.maintenance_agent = MaintenanceAgent(self.database, self.settings)

        # Web server
        self.web_app = create_app(
            self.venue_manager,
            self.user_manager,
            self.command_processor,
            self.broadcaster,
            self.heartbeat_monitor,
            self.identity_client,
            maintenance_agent=self.maintenance_agent,
            run_maintenance=True,
        )

        # Uvicorn server instance (will be created in run())
        self.uvicorn_server = None

        logger.info("venuesync server initialized")

    def run(self, host: str = "0.0.0.0", port: int = 8000):
        """Start the server."""
        logger.info("=" * 60)
        logger.info("venuesync is running!")
        logger.info("API: http://%s:%s/api", host, port)
        logger.info("WebSocket: ws://%s:%s/ws", host, port)
        logger.info("=" * 60)

        # Use uvicorn Server API for better control over shutdown
        config = uvicorn.Config(self.web_app, host=host, port=port, log_level="info")
        self.uvicorn_server = uvicorn.Server(config)
        self.uvicorn_server.run()

    def stop(self):
        """Stop all components."""
        logger.info("Stopping venuesync server...")

        if self.uvicorn_server:
            self.uvicorn_server.should_exit = True

        if self.maintenance_agent:
            self.maintenance_agent.stop()

        if self.database:
            self.database.close()

        logger.info("venuesync server stopped")


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(description="venuesync - Venue playback state sync service")
    parser.add_argument("--host", default="0.0.0.0", help="Address to bind (default 0.0.0.0)")
    parser.add_argument("--port", type=int, default=8000, help="Port to bind (default 8000)")
    parser.add_argument("--db-path", default=None, help="SQLite database path")
    parser.add_argument("--identity-endpoint", default=None, help="Identity provider base URL")
    parser.add_argument("--identity-project", default=None, help="Identity provider project id")
    args = parser.parse_args()

    try:
        server = VenueSyncServer(
            db_path=args.db_path,
            identity_endpoint=args.identity_endpoint,
            identity_project_id=args.identity_project,
        )
    except ValueError as e:
        parser.error(str(e))

    try:
        server.run(host=args.host, port=args.port)
    except KeyboardInterrupt:
        pass
    finally:
        server.stop()


if __name__ == "__main__":
    main()
