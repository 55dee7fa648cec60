"""
FastAPI web server for venuesync.

Provides the REST API for venue commands and management, and the WebSocket
endpoint clients use to join venue rooms and receive state updates.
"""

import asyncio
import json
import logging
import uuid
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, Header, Request, WebSocket, WebSocketDisconnect
from fastapi.concurrency import run_in_threadpool
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from ..activity import ActivityLogManager
from ..broadcast import EVENT_ERROR, StateBroadcaster
from ..commands import CommandProcessor, CommandResult
from ..errors import Forbidden, InvalidPayload, Unauthorized, VenueSyncError
from ..identity import IdentityClient, bearer_token
from ..maintenance import HeartbeatMonitor, MaintenanceAgent
from ..models import Identity, Venue, VenueState, to_iso
from ..user import UserManager
from ..venues import VenueManager

logger = logging.getLogger(__name__)

# Close code sent when the WebSocket handshake credential is rejected
WS_CLOSE_UNAUTHORIZED = 4401
# Close code sent to a client dropped for falling behind
WS_CLOSE_LAGGING = 4408


# Request models
class UICommandRequest(BaseModel):
    command: str
    venueId: str
    userId: Optional[str] = None
    data: Optional[Dict[str, Any]] = None


class VenueData(BaseModel):
    venueId: Optional[str] = None
    name: Optional[str] = None
    settings: Optional[Dict[str, Any]] = None


class VenueRequest(BaseModel):
    """Request model for venue creation/update."""

    action: str
    userId: Optional[str] = None
    venueData: VenueData = VenueData()


# Dependency to get components
def get_venue_manager(request: Request) -> VenueManager:
    """Get VenueManager from app state."""
    return request.app.state.venue_manager


def get_user_manager(request: Request) -> UserManager:
    """Get UserManager from app state."""
    return request.app.state.user_manager


def get_command_processor(request: Request) -> CommandProcessor:
    """Get CommandProcessor from app state."""
    return request.app.state.command_processor


def get_broadcaster(request: Request) -> StateBroadcaster:
    """Get StateBroadcaster from app state."""
    return request.app.state.broadcaster


def get_heartbeat_monitor(request: Request) -> HeartbeatMonitor:
    return request.app.state.heartbeat_monitor


def get_activity_manager(request: Request) -> ActivityLogManager:
    return request.app.state.activity_manager


def get_identity(request: Request, authorization: Optional[str] = Header(None)) -> Identity:
    """
    Verify the bearer credential on a request.

    Raises:
        Unauthorized: credential missing or rejected
    """
    identity_client: IdentityClient = request.app.state.identity_client
    return identity_client.verify(bearer_token(authorization))


def error_body(error: VenueSyncError) -> Dict[str, Any]:
    return {"success": False, "message": error.message, "error": error.code}


def execute_command(
    app: FastAPI,
    identity: Identity,
    venue_id: str,
    command: str,
    data: Optional[Dict[str, Any]],
) -> CommandResult:
    """Authorize, apply and broadcast one command."""
    venue_manager: VenueManager = app.state.venue_manager
    processor: CommandProcessor = app.state.command_processor
    broadcaster: StateBroadcaster = app.state.broadcaster

    venue_manager.require_access(identity, venue_id)
    result = processor.apply(venue_id, command, identity.user_id, data)

    broadcaster.publish_state(result.venue, result.command)
    if result.inserted:
        broadcaster.publish_queue_insert(venue_id, result.inserted)
    return result


def publish_stored_states(
    venue_manager: VenueManager,
    broadcaster: StateBroadcaster,
    venues: List[Venue],
    command: str,
):
    """
    Publish the current stored state of venues changed off the event loop.

    The venues handed over may already be stale: a command or heartbeat can
    run on the loop before this callback does. Re-reading keeps the last
    published message equal to the stored state.
    """
    for venue in venues:
        try:
            current = venue_manager.get_venue(venue.id)
        except VenueSyncError as e:
            logger.warning("Skipping broadcast for venue %s: %s", venue.id, e.message)
            continue
        broadcaster.publish_state(current, command)


def record_heartbeat(app: FastAPI, identity: Identity, venue_id: str) -> Venue:
    """Record a heartbeat and announce a venue coming back from inactive."""
    venue_manager: VenueManager = app.state.venue_manager
    monitor: HeartbeatMonitor = app.state.heartbeat_monitor

    before = venue_manager.require_access(identity, venue_id)
    venue = monitor.record(venue_id)
    if before.state == VenueState.INACTIVE and venue.state != VenueState.INACTIVE:
        app.state.broadcaster.publish_state(venue, "heartbeat")
    return venue


def create_app(
    venue_manager: VenueManager,
    user_manager: UserManager,
    command_processor: CommandProcessor,
    broadcaster: StateBroadcaster,
    heartbeat_monitor: HeartbeatMonitor,
    identity_client: IdentityClient,
    maintenance_agent: Optional[MaintenanceAgent] = None,
    run_maintenance: bool = False,
) -> FastAPI:
    """
    Create and configure FastAPI application.

    Args:
        venue_manager: VenueManager instance
        user_manager: UserManager instance
        command_processor: CommandProcessor instance
        broadcaster: StateBroadcaster instance
        heartbeat_monitor: HeartbeatMonitor instance
        identity_client: IdentityClient used to verify bearer credentials
        maintenance_agent: MaintenanceAgent instance (optional)
        run_maintenance: Start the agent's background sweep with the app

    Returns:
        Configured FastAPI app
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        loop = asyncio.get_running_loop()

        if maintenance_agent is not None:
            # The sweep thread hands changed venues back to the event loop
            maintenance_agent.on_venues_inactive = lambda venues: loop.call_soon_threadsafe(
                publish_stored_states, venue_manager, broadcaster, venues, "maintenance"
            )
            if run_maintenance:
                maintenance_agent.start()
        try:
            yield
        finally:
            if maintenance_agent is not None:
                maintenance_agent.stop()
                maintenance_agent.on_venues_inactive = None

    app = FastAPI(title="venuesync", version="1.0.0", lifespan=lifespan)

    # Store components in app state
    app.state.venue_manager = venue_manager
    app.state.user_manager = user_manager
    app.state.command_processor = command_processor
    app.state.broadcaster = broadcaster
    app.state.registry = broadcaster.registry
    app.state.heartbeat_monitor = heartbeat_monitor
    app.state.identity_client = identity_client
    app.state.maintenance_agent = maintenance_agent
    app.state.activity_manager = venue_manager.activity

    @app.exception_handler(VenueSyncError)
    async def venuesync_error_handler(request: Request, exc: VenueSyncError):
        return JSONResponse(status_code=exc.status_code, content=error_body(exc))

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        fields = ", ".join(".".join(str(p) for p in err["loc"][1:]) for err in exc.errors())
        error = InvalidPayload(f"Invalid request: {fields or 'body'}")
        return JSONResponse(status_code=error.status_code, content=error_body(error))

    # Command endpoint
    @app.post("/api/ui-command")
    async def ui_command(
        request_data: UICommandRequest,
        request: Request,
        identity: Identity = Depends(get_identity),
    ):
        """Apply a playback command to a venue and broadcast the new state."""
        if (
            request_data.userId
            and request_data.userId != identity.user_id
            and not identity.is_admin
        ):
            raise Forbidden("userId does not match the authenticated user")

        result = execute_command(
            request.app, identity, request_data.venueId, request_data.command, request_data.data
        )
        return {
            "success": True,
            "command": request_data.command,
            "venueId": request_data.venueId,
            "timestamp": to_iso(result.timestamp),
            "changes": sorted(result.changes),
            "state": result.venue.to_dict(),
        }

    # Venue endpoints
    @app.get("/api/venues")
    async def list_venues(
        userId: Optional[str] = None,
        identity: Identity = Depends(get_identity),
        venue_mgr: VenueManager = Depends(get_venue_manager),
    ):
        """List venues owned by a user (defaults to the caller)."""
        owner_id = userId or identity.user_id
        if owner_id != identity.user_id and not identity.is_admin:
            raise Forbidden("You can only list your own venues")
        venues = venue_mgr.list_venues(owner_id)
        return {"success": True, "venues": [venue.to_dict() for venue in venues]}

    @app.post("/api/venues")
    async def manage_venue(
        request_data: VenueRequest,
        request: Request,
        identity: Identity = Depends(get_identity),
        venue_mgr: VenueManager = Depends(get_venue_manager),
    ):
        """Create a venue, or update its name and player settings."""
        venue_data = request_data.venueData

        if request_data.action == "create":
            if not venue_data.name:
                raise InvalidPayload("Missing venue name")
            venue = venue_mgr.create_venue(identity.user_id, name=venue_data.name)
            return {
                "success": True,
                "venue": venue.to_dict(),
                "message": "Venue created successfully",
            }

        if request_data.action == "update":
            if not venue_data.venueId:
                raise InvalidPayload("Missing venueId")
            venue = venue_mgr.require_access(identity, venue_data.venueId)
            if venue_data.name:
                venue = venue_mgr.rename_venue(venue.id, venue_data.name, identity.user_id)
                request.app.state.broadcaster.publish_state(venue, "rename")
            if venue_data.settings:
                venue = execute_command(
                    request.app,
                    identity,
                    venue.id,
                    "update_settings",
                    {"settings": venue_data.settings},
                ).venue
            return {
                "success": True,
                "venue": venue.to_dict(),
                "message": "Venue updated successfully",
            }

        raise InvalidPayload(f"Unknown action: {request_data.action}")

    @app.get("/api/venues/{venue_id}")
    async def get_venue(
        venue_id: str,
        identity: Identity = Depends(get_identity),
        venue_mgr: VenueManager = Depends(get_venue_manager),
        broadcaster: StateBroadcaster = Depends(get_broadcaster),
    ):
        """Full snapshot of a venue; reconnecting clients start from here."""
        venue = venue_mgr.require_access(identity, venue_id)
        snapshot = broadcaster.snapshot_message(venue)
        return {"success": True, "sequence": snapshot["sequence"], "venue": snapshot["state"]}

    @app.post("/api/venues/{venue_id}/heartbeat")
    async def heartbeat(
        venue_id: str,
        request: Request,
        identity: Identity = Depends(get_identity),
    ):
        """Liveness signal from a venue's player."""
        venue = record_heartbeat(request.app, identity, venue_id)
        return {
            "success": True,
            "venueId": venue.id,
            "state": venue.state.value,
            "lastHeartbeatAt": to_iso(venue.last_heartbeat_at),
        }

    @app.get("/api/venues/{venue_id}/activity")
    async def venue_activity(
        venue_id: str,
        limit: int = 50,
        identity: Identity = Depends(get_identity),
        venue_mgr: VenueManager = Depends(get_venue_manager),
        activity_mgr: ActivityLogManager = Depends(get_activity_manager),
    ):
        """Most recent activity for a venue, newest first."""
        venue_mgr.require_access(identity, venue_id)
        if not 1 <= limit <= 500:
            raise InvalidPayload("limit must be between 1 and 500")
        entries = activity_mgr.get_venue_activity(venue_id, limit=limit)
        return {"success": True, "activity": [entry.to_dict() for entry in entries]}

    # Authentication endpoints
    @app.post("/api/auth/session")
    async def start_session(
        identity: Identity = Depends(get_identity),
        user_mgr: UserManager = Depends(get_user_manager),
        venue_mgr: VenueManager = Depends(get_venue_manager),
    ):
        """Provision the caller on first login and return their home venue."""
        user = user_mgr.get_or_create_user(identity)
        venue = venue_mgr.get_venue(user.venue_id) if user.venue_id else None
        return {
            "success": True,
            "user": user.to_dict(),
            "venue": venue.to_dict() if venue else None,
        }

    # Maintenance endpoints
    @app.post("/api/maintenance/run")
    async def run_maintenance_now(identity: Identity = Depends(get_identity)):
        """Run the maintenance sweep immediately (admin only)."""
        if not identity.is_admin:
            raise Forbidden("Admin role required")
        if maintenance_agent is None:
            raise InvalidPayload("Maintenance agent is not configured")
        report = maintenance_agent.run_once()
        return {"success": True, "report": report.to_dict()}

    @app.get("/api/health")
    async def health(broadcaster: StateBroadcaster = Depends(get_broadcaster)):
        return {
            "status": "ok",
            "connections": broadcaster.connection_count(),
            "maintenance": bool(maintenance_agent and maintenance_agent.running),
        }

    # Real-time channel
    @app.websocket("/ws")
    async def venue_socket(websocket: WebSocket, token: Optional[str] = None):
        """
        Room-scoped real-time channel.

        Client events: joinVenue, leaveVenue, heartbeat, command, player:now_playing,
        queue:insert.
        Server events: venueSnapshot, playerStateUpdate, queue:insert,
        commandResult, error.
        """
        token = token or bearer_token(websocket.headers.get("authorization"))
        try:
            # verify blocks on the identity provider
            identity = await run_in_threadpool(identity_client.verify, token)
        except Unauthorized as e:
            logger.warning("WebSocket handshake rejected: %s", e.message)
            await websocket.close(code=WS_CLOSE_UNAUTHORIZED, reason=e.message)
            return

        await websocket.accept()
        client_id = uuid.uuid4().hex
        channel = broadcaster.connect(client_id, websocket.send_json)
        closing = False

        async def pump():
            try:
                await channel.pump()
            except Exception as e:
                logger.warning("Send to client %s failed: %s", client_id, e)
                return
            if not closing:
                # Dropped for falling behind
                await websocket.close(code=WS_CLOSE_LAGGING)

        pump_task = asyncio.create_task(pump())
        broadcaster.send_to(
            client_id, {"event": "connected", "clientId": client_id, "userId": identity.user_id}
        )
        logger.info("WebSocket client %s connected as %s", client_id, identity.user_id)

        try:
            while True:
                raw = await websocket.receive_text()
                try:
                    message = json.loads(raw)
                except ValueError:
                    message = None
                if not isinstance(message, dict):
                    broadcaster.send_to(
                        client_id,
                        {"event": EVENT_ERROR, "error": "invalid_payload", "message": "Expected a JSON object"},
                    )
                    continue
                handle_socket_message(websocket.app, identity, client_id, message)
        except WebSocketDisconnect as e:
            logger.info("WebSocket client %s disconnected (%s)", client_id, e.code)
        finally:
            closing = True
            broadcaster.disconnect(client_id)
            try:
                await asyncio.wait_for(pump_task, timeout=1.0)
            except asyncio.TimeoutError:
                pump_task.cancel()

    return app


def handle_socket_message(app: FastAPI, identity: Identity, client_id: str, message: Dict[str, Any]):
    """Dispatch one client event received over the WebSocket."""
    broadcaster: StateBroadcaster = app.state.broadcaster
    venue_manager: VenueManager = app.state.venue_manager
    event = message.get("event")
    venue_id = message.get("venueId")

    try:
        if not isinstance(venue_id, str) or not venue_id:
            raise InvalidPayload("Missing venueId")

        if event == "joinVenue":
            venue = venue_manager.require_access(identity, venue_id)
            broadcaster.registry.join(client_id, venue_id)
            broadcaster.send_to(client_id, broadcaster.snapshot_message(venue))

        elif event == "leaveVenue":
            broadcaster.registry.leave(client_id, venue_id)
            broadcaster.send_to(client_id, {"event": "leftVenue", "venueId": venue_id})

        elif event == "heartbeat":
            record_heartbeat(app, identity, venue_id)

        elif event in ("command", "player:now_playing", "queue:insert"):
            if event == "command":
                command = message.get("command")
                data = message.get("data")
            elif event == "queue:insert":
                command = "add_to_queue"
                data = {
                    key: message[key]
                    for key in ("track", "position", "priority", "queue")
                    if key in message
                }
            else:
                command = "update_now_playing"
                data = {"track": message.get("track")}
            if not isinstance(command, str) or not command:
                raise InvalidPayload("Missing command")
            result = execute_command(app, identity, venue_id, command, data)
            broadcaster.send_to(
                client_id,
                {
                    "event": "commandResult",
                    "success": True,
                    "command": command,
                    "venueId": venue_id,
                    "timestamp": to_iso(result.timestamp),
                },
            )

        else:
            raise InvalidPayload(f"Unknown event: {event}")

    except VenueSyncError as e:
        logger.warning("WebSocket event %s from %s failed: %s", event, client_id, e.message)
        broadcaster.send_to(
            client_id,
            {"event": EVENT_ERROR, "error": e.code, "message": e.message, "request": event},
        )
