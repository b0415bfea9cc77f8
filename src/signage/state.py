"""
Device state for the signage device client.

``AppState`` is a closed tagged union: ``kind`` selects the variant and
only the payload fields of that variant are set. Use the constructors
(``AppState.playing(...)`` etc.) rather than building it directly, and
``dispatch`` to branch over every variant.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Optional, TypeVar

from .models import PlaylistSnapshot, RegistrationSession

T = TypeVar("T")


class DeviceState(Enum):
    """Variant tag of AppState."""
    LOADING = "loading"                              # Startup or reset in progress
    REGISTRATION_REQUIRED = "registration_required"  # No usable registration
    LICENSE_EXPIRED = "license_expired"              # Registered, playback blocked
    PLAYING = "playing"                              # Normal operation
    ERROR = "error"                                  # Failed with nothing cached


class StateDispatchError(Exception):
    """Raised when a dispatch table does not cover every DeviceState."""
    pass


@dataclass(frozen=True)
class AppState:
    """Immutable snapshot of the device state."""

    kind: DeviceState
    playlist: Optional[PlaylistSnapshot] = None       # PLAYING
    cache_progress: float = 0.0                       # PLAYING
    session: Optional[RegistrationSession] = None     # REGISTRATION_REQUIRED
    message: Optional[str] = None                     # REGISTRATION_REQUIRED, ERROR

    @classmethod
    def loading(cls) -> "AppState":
        return cls(DeviceState.LOADING)

    @classmethod
    def registration_required(
        cls,
        session: Optional[RegistrationSession] = None,
        error: Optional[str] = None
    ) -> "AppState":
        return cls(DeviceState.REGISTRATION_REQUIRED, session=session, message=error)

    @classmethod
    def license_expired(cls) -> "AppState":
        return cls(DeviceState.LICENSE_EXPIRED)

    @classmethod
    def playing(cls, playlist: PlaylistSnapshot, cache_progress: float) -> "AppState":
        return cls(DeviceState.PLAYING, playlist=playlist, cache_progress=cache_progress)

    @classmethod
    def failed(cls, message: str) -> "AppState":
        return cls(DeviceState.ERROR, message=message)

    @property
    def is_playing(self) -> bool:
        return self.kind is DeviceState.PLAYING

    def dispatch(self, handlers: Dict[DeviceState, Callable[["AppState"], T]]) -> T:
        """
        Call the handler registered for this state's kind.

        Args:
            handlers: One callable per DeviceState

        Returns:
            The handler's result

        Raises:
            StateDispatchError: If any DeviceState has no handler
        """
        missing = [kind.name for kind in DeviceState if kind not in handlers]
        if missing:
            raise StateDispatchError(f"No handler for: {', '.join(missing)}")
        return handlers[self.kind](self)

    def to_dict(self) -> Dict[str, Any]:
        """Wire form published to the front end."""
        return self.dispatch({
            DeviceState.LOADING: lambda s: {"state": s.kind.value},
            DeviceState.REGISTRATION_REQUIRED: lambda s: {
                "state": s.kind.value,
                "session": s.session.to_dict() if s.session else None,
                "error": s.message,
            },
            DeviceState.LICENSE_EXPIRED: lambda s: {"state": s.kind.value},
            DeviceState.PLAYING: lambda s: {
                "state": s.kind.value,
                "playlist": s.playlist.to_dict() if s.playlist else None,
                "cacheProgress": s.cache_progress,
            },
            DeviceState.ERROR: lambda s: {"state": s.kind.value, "message": s.message},
        })

    def __repr__(self) -> str:
        if self.kind is DeviceState.PLAYING and self.playlist is not None:
            return (f"AppState(PLAYING, playlist={self.playlist.id}, "
                    f"progress={self.cache_progress:.2f})")
        if self.message:
            return f"AppState({self.kind.name}, message={self.message!r})"
        return f"AppState({self.kind.name})"
