"""
Data models for venuesync.

Defines typed dataclasses for all entities used throughout the application.
"""

from dataclasses import asdict, dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def to_iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat(timespec="microseconds") if value else None


def from_iso(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class VenueState(Enum):
    """Venue playback state enumeration."""

    IDLE = "idle"
    READY = "ready"
    PLAYING = "playing"
    PAUSED = "paused"
    STOPPED = "stopped"
    INACTIVE = "inactive"


class RepeatMode(Enum):
    OFF = "off"
    ONE = "one"
    ALL = "all"


@dataclass(frozen=True)
class Track:
    """A playable item. Frozen so queue entries are values, not shared references."""

    video_id: str
    title: str
    channel_title: Optional[str] = None
    duration_seconds: Optional[float] = None
    thumbnail_url: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "videoId": self.video_id,
            "title": self.title,
            "channelTitle": self.channel_title,
            "durationSeconds": self.duration_seconds,
            "thumbnailUrl": self.thumbnail_url,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Track":
        return cls(
            video_id=data["videoId"],
            title=data["title"],
            channel_title=data.get("channelTitle"),
            duration_seconds=data.get("durationSeconds"),
            thumbnail_url=data.get("thumbnailUrl"),
        )


@dataclass(frozen=True)
class PlayerSettings:
    """Per-venue player settings."""

    repeat_mode: RepeatMode = RepeatMode.OFF
    crossfade_seconds: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "repeatMode": self.repeat_mode.value,
            "crossfadeSeconds": self.crossfade_seconds,
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "PlayerSettings":
        if not data:
            return cls()
        return cls(
            repeat_mode=RepeatMode(data.get("repeatMode", RepeatMode.OFF.value)),
            crossfade_seconds=float(data.get("crossfadeSeconds", 0.0)),
        )


@dataclass
class Venue:
    """One playback room with a single authoritative state."""

    id: str
    owner_id: str
    name: str = ""
    state: VenueState = VenueState.IDLE
    now_playing: Optional[Track] = None
    current_time_seconds: float = 0.0
    volume: int = 80
    active_queue: List[Track] = field(default_factory=list)
    priority_queue: List[Track] = field(default_factory=list)
    # Most recently played last; bounded by the processor's history limit
    history: List[Track] = field(default_factory=list)
    is_shuffled: bool = False
    player_settings: PlayerSettings = field(default_factory=PlayerSettings)
    last_heartbeat_at: Optional[datetime] = None
    last_updated_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    version: int = 0

    def copy(self) -> "Venue":
        """Copy with fresh queue lists so mutations never leak into the original."""
        return replace(
            self,
            active_queue=list(self.active_queue),
            priority_queue=list(self.priority_queue),
            history=list(self.history),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Full client-facing snapshot."""
        return {
            "id": self.id,
            "ownerId": self.owner_id,
            "name": self.name,
            "state": self.state.value,
            "nowPlaying": self.now_playing.to_dict() if self.now_playing else None,
            "currentTimeSeconds": self.current_time_seconds,
            "volume": self.volume,
            "activeQueue": [track.to_dict() for track in self.active_queue],
            "priorityQueue": [track.to_dict() for track in self.priority_queue],
            "history": [track.to_dict() for track in self.history],
            "isShuffled": self.is_shuffled,
            "playerSettings": self.player_settings.to_dict(),
            "lastHeartbeatAt": to_iso(self.last_heartbeat_at),
            "lastUpdatedAt": to_iso(self.last_updated_at),
            "createdAt": to_iso(self.created_at),
            "version": self.version,
        }


@dataclass
class User:
    """User entity, provisioned lazily on first authentication."""

    id: str
    email: Optional[str] = None
    venue_id: Optional[str] = None
    role: str = "user"
    is_active: bool = True
    created_at: Optional[datetime] = None
    last_activity_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["created_at"] = to_iso(self.created_at)
        data["last_activity_at"] = to_iso(self.last_activity_at)
        return data


@dataclass
class ActivityLogEntry:
    """Append-only activity record."""

    id: str
    event_type: str
    event_data: Dict[str, Any] = field(default_factory=dict)
    user_id: Optional[str] = None
    venue_id: Optional[str] = None
    timestamp: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "userId": self.user_id,
            "venueId": self.venue_id,
            "eventType": self.event_type,
            "eventData": self.event_data,
            "timestamp": to_iso(self.timestamp),
        }


@dataclass(frozen=True)
class Identity:
    """A verified identity returned by the identity provider."""

    user_id: str
    role: str = "user"
    email: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


@dataclass
class ConfigEntry:
    """Configuration entry."""

    key: str
    value: str
    updated_at: Optional[datetime] = None
