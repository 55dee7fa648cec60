"""
Command processing for venuesync.

Validates playback commands, applies them to a venue's state and persists the
new state together with its activity entry. Commands for one venue are
serialized by a per-venue lock; the repository's version check catches
writers outside that lock (heartbeats, maintenance, other processes).
"""

import logging
import math
import random
import sys
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, Optional, Tuple

from . import queue as queue_ops
from .activity import summarize_payload
from .config_manager import SyncSettings
from .errors import InvalidPayload, OutOfRange, UnknownCommand, VenueSyncError
from .models import PlayerSettings, RepeatMode, Track, Venue, VenueState, utcnow
from .venues import VenueManager

# Legacy command names accepted from older clients
COMMAND_ALIASES = {
    "play": "resume",
    "skip": "skip_next",
    "volume": "update_volume",
}


@dataclass
class CommandResult:
    """Outcome of a successfully applied command."""

    command: str
    venue: Venue
    changes: Dict[str, Any] = field(default_factory=dict)
    timestamp: Optional[datetime] = None
    # Track inserted by add_to_queue, with the queue and position it landed at
    inserted: Optional[Dict[str, Any]] = None


# =============================================================================
# Payload validation
# =============================================================================


def _is_number(value: Any) -> bool:
    # JSON bodies may carry Infinity or NaN, which cannot be serialized back out
    if isinstance(value, bool):
        return False
    if isinstance(value, float):
        return math.isfinite(value)
    return isinstance(value, int) and abs(value) <= sys.float_info.max


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def parse_track(data: Any) -> Track:
    """
    Build a Track from a client payload.

    Accepts the camelCase wire names and the older snake_case names
    (video_id, duration, thumbnail).

    Raises:
        InvalidPayload: required fields missing or wrongly typed
    """
    if not isinstance(data, dict):
        raise InvalidPayload("Missing track data", field="track")

    video_id = data.get("videoId", data.get("video_id"))
    title = data.get("title")
    if not isinstance(video_id, str) or not video_id:
        raise InvalidPayload("Track requires a videoId", field="track.videoId")
    if not isinstance(title, str) or not title:
        raise InvalidPayload("Track requires a title", field="track.title")

    duration = data.get("durationSeconds", data.get("duration"))
    if duration is not None and (not _is_number(duration) or duration < 0):
        raise InvalidPayload(
            "Track durationSeconds must be a non-negative number", field="track.durationSeconds"
        )

    channel_title = data.get("channelTitle", data.get("artist"))
    thumbnail_url = data.get("thumbnailUrl", data.get("thumbnail"))
    for name, value in (("channelTitle", channel_title), ("thumbnailUrl", thumbnail_url)):
        if value is not None and not isinstance(value, str):
            raise InvalidPayload(f"Track {name} must be a string", field=f"track.{name}")

    return Track(
        video_id=video_id,
        title=title,
        channel_title=channel_title,
        duration_seconds=float(duration) if duration is not None else None,
        thumbnail_url=thumbnail_url,
    )


def _position(payload: Dict[str, Any], key: str = "position") -> float:
    value = payload.get(key)
    if not _is_number(value):
        raise InvalidPayload(f"Missing {key}", field=key)
    if value < 0:
        raise InvalidPayload(f"{key} must be >= 0", field=key)
    return float(value)


def _optional_int(payload: Dict[str, Any], key: str) -> Optional[int]:
    value = payload.get(key)
    if value is None:
        return None
    if not _is_int(value):
        raise InvalidPayload(f"{key} must be an integer", field=key)
    return value


def _queue_name(payload: Dict[str, Any]) -> str:
    if payload.get("priority") is True or payload.get("queue") == "priority":
        return "priority"
    queue_name = payload.get("queue", "active")
    if queue_name not in ("active", "priority"):
        raise InvalidPayload("queue must be 'active' or 'priority'", field="queue")
    return queue_name


def _parse_none(payload: Dict[str, Any]) -> Dict[str, Any]:
    return {}


def _parse_track_command(payload: Dict[str, Any]) -> Dict[str, Any]:
    return {"track": parse_track(payload.get("track"))}


def _parse_position(payload: Dict[str, Any]) -> Dict[str, Any]:
    return {"position": _position(payload)}


def _parse_volume(payload: Dict[str, Any]) -> Dict[str, Any]:
    volume = payload.get("volume")
    if volume is None:
        raise InvalidPayload("Missing volume", field="volume")
    if not _is_number(volume) or (isinstance(volume, float) and not volume.is_integer()):
        raise InvalidPayload("volume must be an integer", field="volume")
    if not 0 <= volume <= 100:
        raise InvalidPayload("volume must be between 0 and 100", field="volume")
    return {"volume": int(volume)}


def _parse_add(payload: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "track": parse_track(payload.get("track")),
        "position": _optional_int(payload, "position"),
        "queue": _queue_name(payload),
    }


def _parse_remove(payload: Dict[str, Any]) -> Dict[str, Any]:
    index = payload.get("index")
    if not _is_int(index):
        raise InvalidPayload("Missing queue index", field="index")
    return {"index": index, "queue": _queue_name(payload)}


def _parse_shuffle(payload: Dict[str, Any]) -> Dict[str, Any]:
    return {"seed": _optional_int(payload, "seed")}


def _parse_settings(payload: Dict[str, Any]) -> Dict[str, Any]:
    settings = payload.get("settings")
    if not isinstance(settings, dict) or not settings:
        raise InvalidPayload("Missing settings", field="settings")
    parsed: Dict[str, Any] = {}
    if "repeatMode" in settings:
        try:
            parsed["repeat_mode"] = RepeatMode(settings["repeatMode"])
        except ValueError:
            raise InvalidPayload(
                "repeatMode must be one of off, one, all", field="settings.repeatMode"
            ) from None
    if "crossfadeSeconds" in settings:
        crossfade = settings["crossfadeSeconds"]
        if not _is_number(crossfade) or crossfade < 0:
            raise InvalidPayload(
                "crossfadeSeconds must be a non-negative number",
                field="settings.crossfadeSeconds",
            )
        parsed["crossfade_seconds"] = float(crossfade)
    if not parsed:
        raise InvalidPayload("No recognized settings", field="settings")
    return {"settings": parsed}


# =============================================================================
# Processor
# =============================================================================


class CommandProcessor:
    """Applies playback commands to venue state."""

    def __init__(
        self,
        venue_manager: VenueManager,
        settings: Optional[SyncSettings] = None,
        rng: Optional[random.Random] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize CommandProcessor.

        Args:
            venue_manager: VenueManager providing venue access and locks
            settings: Resolved service settings (history limit, retry policy)
            rng: Random source for shuffles without an explicit seed
            sleep: Backoff sleep function
        """
        self.venue_manager = venue_manager
        self.settings = settings or venue_manager.settings
        self.rng = rng or random.Random()
        self._sleep = sleep
        self.logger = logging.getLogger(__name__)

        self._commands: Dict[str, Tuple[Callable, Callable]] = {
            "play_track": (_parse_track_command, self._play_track),
            "pause": (_parse_none, self._pause),
            "resume": (_parse_none, self._resume),
            "stop": (_parse_none, self._stop),
            "skip_next": (_parse_none, self._skip_next),
            "previous": (_parse_none, self._previous),
            "seek": (_parse_position, self._seek),
            "update_volume": (_parse_volume, self._update_volume),
            "add_to_queue": (_parse_add, self._add_to_queue),
            "remove_from_queue": (_parse_remove, self._remove_from_queue),
            "shuffle": (_parse_shuffle, self._shuffle),
            "update_now_playing": (_parse_track_command, self._update_now_playing),
            "update_progress": (_parse_position, self._seek),
            "update_settings": (_parse_settings, self._update_settings),
        }

    @property
    def commands(self):
        """Names of all recognized commands, aliases included."""
        return sorted(set(self._commands) | set(COMMAND_ALIASES))

    def apply(
        self,
        venue_id: str,
        command: str,
        actor_id: Optional[str],
        payload: Optional[Dict[str, Any]] = None,
    ) -> CommandResult:
        """
        Validate and apply one command.

        Args:
            venue_id: Target venue
            command: Command name
            actor_id: ID of the user issuing the command
            payload: Command-specific fields

        Returns:
            CommandResult with the persisted venue and the changed fields

        Raises:
            UnknownCommand, InvalidPayload, NotFound, OutOfRange: never retried
            Conflict, StoreUnavailable: after the retry budget is spent
        """
        canonical = COMMAND_ALIASES.get(command, command)
        if canonical not in self._commands:
            raise UnknownCommand(f"Unknown command: {command}", command=command)
        if payload is None:
            payload = {}
        if not isinstance(payload, dict):
            raise InvalidPayload("Command data must be an object", field="data")
        if not venue_id:
            raise InvalidPayload("Missing venueId", field="venueId")

        parser, mutator = self._commands[canonical]
        args = parser(payload)

        attempts = max(1, self.settings.command_retry_attempts)
        attempt = 0
        while True:
            attempt += 1
            try:
                return self._apply_once(venue_id, canonical, actor_id, payload, mutator, args)
            except VenueSyncError as e:
                if not e.retryable:
                    self.logger.warning(
                        "Command %s on venue %s rejected: %s", canonical, venue_id, e
                    )
                    raise
                if attempt >= attempts:
                    self.logger.error(
                        "Command %s on venue %s failed after %s attempts: %s",
                        canonical,
                        venue_id,
                        attempt,
                        e,
                        exc_info=True,
                    )
                    raise
                self.logger.warning(
                    "Command %s on venue %s hit %s (attempt %s/%s), retrying",
                    canonical,
                    venue_id,
                    e.code,
                    attempt,
                    attempts,
                )
                self._sleep(self.settings.command_retry_backoff_seconds * attempt)

    def _apply_once(
        self,
        venue_id: str,
        command: str,
        actor_id: Optional[str],
        payload: Dict[str, Any],
        mutator: Callable,
        args: Dict[str, Any],
    ) -> CommandResult:
        with self.venue_manager.locks.get(venue_id):
            current = self.venue_manager.get_venue(venue_id)
            updated = current.copy()
            inserted = mutator(updated, **args)

            now = utcnow()
            updated.last_updated_at = now
            entry = self.venue_manager.activity.build_entry(
                command,
                {"command": command, "actorId": actor_id, "payload": summarize_payload(payload)},
                user_id=actor_id,
                venue_id=venue_id,
                timestamp=now,
            )
            saved = self.venue_manager.repository.save(updated, current.version, entry)

        before = current.to_dict()
        changes = {
            key: value
            for key, value in saved.to_dict().items()
            if before.get(key) != value and key not in ("version", "lastUpdatedAt")
        }
        self.logger.info(
            "Applied %s to venue %s (by %s): %s",
            command,
            venue_id,
            actor_id,
            ", ".join(sorted(changes)) or "no changes",
        )
        return CommandResult(
            command=command, venue=saved, changes=changes, timestamp=now, inserted=inserted
        )

    # =========================================================================
    # Mutators (operate on a private copy of the venue)
    # =========================================================================

    def _start(self, venue: Venue, track: Optional[Track]):
        """Make track the active item, remembering what played before it."""
        venue.history = queue_ops.push_history(
            venue.history, venue.now_playing, self.settings.history_limit
        )
        venue.now_playing = track
        venue.current_time_seconds = 0.0
        venue.state = VenueState.PLAYING if track else VenueState.IDLE

    def _play_track(self, venue: Venue, track: Track):
        self._start(venue, track)

    def _pause(self, venue: Venue):
        venue.state = VenueState.PAUSED

    def _resume(self, venue: Venue):
        venue.state = VenueState.PLAYING

    def _stop(self, venue: Venue):
        venue.state = VenueState.STOPPED
        venue.current_time_seconds = 0.0

    def _skip_next(self, venue: Venue):
        active = venue.active_queue
        if venue.player_settings.repeat_mode == RepeatMode.ALL and venue.now_playing:
            active = queue_ops.insert(active, venue.now_playing)
        track, venue.priority_queue, venue.active_queue = queue_ops.pop_next(
            venue.priority_queue, active
        )
        self._start(venue, track)

    def _previous(self, venue: Venue):
        track, history = queue_ops.pop_history(venue.history)
        if track is None:
            raise OutOfRange("No previous track in history")
        if venue.now_playing:
            venue.active_queue = queue_ops.insert(venue.active_queue, venue.now_playing, 0)
        venue.history = history
        venue.now_playing = track
        venue.current_time_seconds = 0.0
        venue.state = VenueState.PLAYING

    def _seek(self, venue: Venue, position: float):
        venue.current_time_seconds = position

    def _update_volume(self, venue: Venue, volume: int):
        venue.volume = volume

    def _add_to_queue(self, venue: Venue, track: Track, position: Optional[int], queue: str):
        if queue == "priority":
            venue.priority_queue = queue_ops.insert(venue.priority_queue, track, position)
            landed = position if position is not None else len(venue.priority_queue) - 1
        else:
            venue.active_queue = queue_ops.insert(venue.active_queue, track, position)
            landed = position if position is not None else len(venue.active_queue) - 1
        if venue.state == VenueState.IDLE:
            venue.state = VenueState.READY
        return {"track": track.to_dict(), "queue": queue, "position": landed}

    def _remove_from_queue(self, venue: Venue, index: int, queue: str):
        if queue == "priority":
            venue.priority_queue = queue_ops.remove(venue.priority_queue, index)
        else:
            venue.active_queue = queue_ops.remove(venue.active_queue, index)
        if (
            venue.state == VenueState.READY
            and not venue.active_queue
            and not venue.priority_queue
        ):
            venue.state = VenueState.IDLE

    def _shuffle(self, venue: Venue, seed: Optional[int]):
        venue.is_shuffled = not venue.is_shuffled
        if venue.is_shuffled:
            rng = random.Random(seed) if seed is not None else self.rng
            venue.active_queue = queue_ops.shuffle(venue.active_queue, rng)

    def _update_now_playing(self, venue: Venue, track: Track):
        venue.now_playing = track

    def _update_settings(self, venue: Venue, settings: Dict[str, Any]):
        current = venue.player_settings
        venue.player_settings = PlayerSettings(
            repeat_mode=settings.get("repeat_mode", current.repeat_mode),
            crossfade_seconds=settings.get("crossfade_seconds", current.crossfade_seconds),
        )
