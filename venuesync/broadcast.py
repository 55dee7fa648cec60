"""
State broadcasting for venuesync.

Fans venue state out to every client joined to the venue's room. Each client
has a bounded FIFO buffer drained by its own pump task, so messages for a
venue reach a given client in the order they were published and a slow client
never blocks the others. A client whose buffer overflows is dropped; on
reconnect it fetches a fresh snapshot instead of replaying history.

All methods must be called from the event loop thread.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional

from .models import Venue
from .registry import SessionRegistry

logger = logging.getLogger(__name__)

SendFunc = Callable[[Dict[str, Any]], Awaitable[None]]

EVENT_STATE_UPDATE = "playerStateUpdate"
EVENT_QUEUE_INSERT = "queue:insert"
EVENT_SNAPSHOT = "venueSnapshot"
EVENT_ERROR = "error"


class ClientChannel:
    """Outbound buffer for one connected client."""

    def __init__(self, client_id: str, send: SendFunc, max_queue: int):
        self.client_id = client_id
        self._send = send
        self._queue: "asyncio.Queue[Optional[Dict[str, Any]]]" = asyncio.Queue(maxsize=max_queue)
        self.closed = False

    def offer(self, message: Dict[str, Any]) -> bool:
        """Buffer a message. Returns False if the buffer is full or closed."""
        if self.closed:
            return False
        try:
            self._queue.put_nowait(message)
        except asyncio.QueueFull:
            return False
        return True

    def pending(self) -> int:
        return self._queue.qsize()

    async def pump(self):
        """Deliver buffered messages until closed."""
        while True:
            message = await self._queue.get()
            if message is None:
                return
            await self._send(message)

    def close(self):
        """Stop the pump after any buffered messages."""
        if self.closed:
            return
        self.closed = True
        try:
            self._queue.put_nowait(None)
        except asyncio.QueueFull:
            # Pump is still draining; clear the backlog so the sentinel fits
            while not self._queue.empty():
                self._queue.get_nowait()
            self._queue.put_nowait(None)


class StateBroadcaster:
    """Delivers venue state to the clients in each venue's room."""

    def __init__(self, registry: SessionRegistry, queue_size: int = 100):
        """
        Initialize StateBroadcaster.

        Args:
            registry: Room membership
            queue_size: Maximum buffered messages per client
        """
        self.registry = registry
        self.queue_size = queue_size
        self._channels: Dict[str, ClientChannel] = {}
        # One counter per venue ever published; venues are never deleted
        self._sequences: Dict[str, int] = {}

    def connect(self, client_id: str, send: SendFunc) -> ClientChannel:
        """Register a client's send function. The caller runs channel.pump()."""
        channel = ClientChannel(client_id, send, self.queue_size)
        previous = self._channels.get(client_id)
        if previous is not None:
            previous.close()
        self._channels[client_id] = channel
        logger.info("Client %s connected", client_id)
        return channel

    def disconnect(self, client_id: str):
        """Forget a client and remove it from every room."""
        channel = self._channels.pop(client_id, None)
        if channel is not None:
            channel.close()
        self.registry.leave_all(client_id)
        logger.info("Client %s disconnected", client_id)

    def connection_count(self) -> int:
        return len(self._channels)

    def next_sequence(self, venue_id: str) -> int:
        sequence = self._sequences.get(venue_id, 0) + 1
        self._sequences[venue_id] = sequence
        return sequence

    def send_to(self, client_id: str, message: Dict[str, Any]) -> bool:
        """Send a message to one client (snapshots, errors)."""
        channel = self._channels.get(client_id)
        if channel is None:
            return False
        if not channel.offer(message):
            self._drop(client_id)
            return False
        return True

    def snapshot_message(self, venue: Venue) -> Dict[str, Any]:
        """Full-state message a client starts from after joining or reconnecting."""
        return {
            "event": EVENT_SNAPSHOT,
            "venueId": venue.id,
            "sequence": self._sequences.get(venue.id, 0),
            "state": venue.to_dict(),
        }

    def publish_state(self, venue: Venue, command: Optional[str] = None) -> int:
        """
        Push a venue's full new state to its room.

        Returns:
            Number of clients the message was buffered for
        """
        message = {
            "event": EVENT_STATE_UPDATE,
            "venueId": venue.id,
            "sequence": self.next_sequence(venue.id),
            "command": command,
            "state": venue.to_dict(),
        }
        return self._publish(venue.id, message)

    def publish_queue_insert(self, venue_id: str, inserted: Dict[str, Any]) -> int:
        """Announce a track added to one of the venue's queues."""
        message = {
            "event": EVENT_QUEUE_INSERT,
            "venueId": venue_id,
            "sequence": self.next_sequence(venue_id),
            **inserted,
        }
        return self._publish(venue_id, message)

    def _publish(self, venue_id: str, message: Dict[str, Any]) -> int:
        delivered = 0
        for client_id in sorted(self.registry.members(venue_id)):
            channel = self._channels.get(client_id)
            if channel is None:
                # Joined but no live connection
                self.registry.leave(client_id, venue_id)
                continue
            if channel.offer(message):
                delivered += 1
            else:
                self._drop(client_id)
        logger.debug(
            "Published %s #%s for venue %s to %s client(s)",
            message["event"],
            message["sequence"],
            venue_id,
            delivered,
        )
        return delivered

    def _drop(self, client_id: str):
        logger.warning("Client %s fell behind and was dropped; it must re-fetch state", client_id)
        self.disconnect(client_id)
