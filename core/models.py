"""
Data models for the Deep Work focus timer.
Uses dataclasses for clean, type-annotated data structures.
"""

import uuid
from dataclasses import dataclass, field, replace, asdict
from datetime import datetime, timezone
from enum import Enum, auto
from typing import Optional, Tuple, Any, Dict


# Allowed session length range (5 - 180 minutes)
MIN_DURATION_SECONDS = 300
MAX_DURATION_SECONDS = 10800
DEFAULT_DURATION_SECONDS = 25 * 60

# Seconds remaining at which a countdown warning is emitted
WARNING_THRESHOLDS = (60, 30, 10)


def utc_now() -> datetime:
    """Return the current wall-clock time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def validate_duration(seconds: float) -> bool:
    """Check that a session duration lies within the allowed range."""
    return MIN_DURATION_SECONDS <= seconds <= MAX_DURATION_SECONDS


def format_duration(seconds: float) -> str:
    """Format a number of seconds as HH:MM:SS."""
    total = max(0, int(seconds))
    hours = total // 3600
    minutes = (total % 3600) // 60
    secs = total % 60
    return f"{hours:02d}:{minutes:02d}:{secs:02d}"


class TimerState(Enum):
    """Possible states for the timer state machine."""
    IDLE = auto()
    RUNNING = auto()
    PAUSED = auto()
    COMPLETED = auto()


@dataclass(frozen=True)
class Session:
    """
    A single focus session.
    Immutable: finishing a session produces a new value via finalize_session().
    """
    goal: str = ""
    duration: float = float(DEFAULT_DURATION_SECONDS)
    start_time: datetime = field(default_factory=utc_now)
    end_time: Optional[datetime] = None
    reflection: Optional[str] = None
    blocked_apps: Tuple[str, ...] = ()
    blocked_websites: Tuple[str, ...] = ()
    completed: bool = False
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def __post_init__(self):
        # Lists handed in by callers are copied so the session keeps a snapshot
        object.__setattr__(self, 'blocked_apps', tuple(self.blocked_apps))
        object.__setattr__(self, 'blocked_websites', tuple(self.blocked_websites))

    @property
    def elapsed_seconds(self) -> Optional[float]:
        """Wall-clock seconds between start and end, if the session has ended."""
        if self.end_time is None:
            return None
        return (self.end_time - self.start_time).total_seconds()

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['start_time'] = self.start_time.isoformat()
        data['end_time'] = self.end_time.isoformat() if self.end_time else None
        data['blocked_apps'] = list(self.blocked_apps)
        data['blocked_websites'] = list(self.blocked_websites)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Session":
        end_time = data.get('end_time')
        return cls(
            id=data['id'],
            goal=data.get('goal', ""),
            duration=float(data['duration']),
            start_time=datetime.fromisoformat(data['start_time']),
            end_time=datetime.fromisoformat(end_time) if end_time else None,
            reflection=data.get('reflection'),
            blocked_apps=data.get('blocked_apps', ()),
            blocked_websites=data.get('blocked_websites', ()),
            completed=bool(data.get('completed', False)),
        )


def finalize_session(session: Session, end_time: datetime, completed: bool) -> Session:
    """
    Build the finished form of a session.

    Args:
        session: The session as it was created at start.
        end_time: Wall-clock instant the session ended.
        completed: True only if the countdown reached zero on its own.

    Returns:
        A new Session carrying every field of the original plus the end data.
    """
    return replace(session, end_time=end_time, completed=completed, reflection=None)


@dataclass
class UserPreferences:
    """User defaults, saved on every change."""
    default_duration: float = float(DEFAULT_DURATION_SECONDS)
    default_blocked_apps: list = field(default_factory=list)
    default_blocked_websites: list = field(default_factory=list)
    notifications_enabled: bool = True
    sound_enabled: bool = True
    last_goal: str = ""
    pause_on_sleep: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UserPreferences":
        """Build preferences from decoded JSON, ignoring unknown keys."""
        prefs = cls()
        for key, value in data.items():
            if hasattr(prefs, key):
                setattr(prefs, key, value)
        prefs.default_duration = float(prefs.default_duration)
        prefs.default_blocked_apps = list(prefs.default_blocked_apps)
        prefs.default_blocked_websites = list(prefs.default_blocked_websites)
        return prefs


@dataclass(frozen=True)
class PersistedTimerState:
    """Timer fields as read back from the persistence store."""
    start_instant: datetime
    original_duration: float
    is_active: bool
    goal: str = ""


@dataclass(frozen=True)
class TimerSnapshot:
    """Observable timer state published to the UI on every change."""
    state: TimerState
    time_remaining: float
    progress: float
    is_active: bool
    is_complete: bool


@dataclass
class TimerContext:
    """
    Current timer context containing all state information.
    Owned and mutated by the engine only.
    """
    state: TimerState = TimerState.IDLE
    start_instant: Optional[datetime] = None
    original_duration: float = 0.0
    time_remaining: float = 0.0
    progress: float = 1.0
    is_active: bool = False
    is_complete: bool = False
    goal: str = ""

    def snapshot(self) -> TimerSnapshot:
        return TimerSnapshot(
            state=self.state,
            time_remaining=self.time_remaining,
            progress=self.progress,
            is_active=self.is_active,
            is_complete=self.is_complete,
        )

    def format_remaining(self) -> str:
        """Format remaining time as HH:MM:SS."""
        return format_duration(self.time_remaining)
