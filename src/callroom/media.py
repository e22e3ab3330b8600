"""Local capture and playback primitives used by the call session.

A ``LocalMediaHandle`` is the live reference to captured camera/microphone
tracks.  Capture itself is delegated to a ``MediaDevices`` implementation; the
room provides one that asks the browser over its WebSocket, tests provide
in-memory fakes.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional, Protocol

logger = logging.getLogger(__name__)

AUDIO = "audio"
VIDEO = "video"

CAPTURE_CONSTRAINTS = {
    "video": {"width": 640, "height": 360},
    "audio": True,
}

PLACEHOLDER_VIDEO_URL = "/assets/fake-call-remote.mp4"


class MediaCaptureError(Exception):
    """Capture request did not produce a local media handle."""


class PermissionDeniedError(MediaCaptureError):
    pass


class DeviceUnavailableError(MediaCaptureError):
    pass


class CaptureCancelledError(MediaCaptureError):
    """The user dismissed the capture prompt."""


class MediaPlaybackError(Exception):
    """A media element refused to start playing (e.g. autoplay policy)."""


# DOMException names reported by getUserMedia
_CAPTURE_ERRORS = {
    "NotAllowedError": PermissionDeniedError,
    "SecurityError": PermissionDeniedError,
    "NotFoundError": DeviceUnavailableError,
    "NotReadableError": DeviceUnavailableError,
    "OverconstrainedError": DeviceUnavailableError,
    "AbortError": CaptureCancelledError,
}


def capture_error_from_name(name: str, message: str = "") -> MediaCaptureError:
    error_cls = _CAPTURE_ERRORS.get(name, DeviceUnavailableError)
    return error_cls(message or name or "capture failed")


class MediaTrack:
    """One captured track. ``stop()`` is idempotent."""

    def __init__(self, track_id: str, kind: str):
        self.id = track_id
        self.kind = kind
        self._enabled = True
        self._stopped = False

    @property
    def enabled(self) -> bool:
        return self._enabled

    @enabled.setter
    def enabled(self, value: bool) -> None:
        self._enabled = bool(value)
        self._on_enabled(self._enabled)

    @property
    def stopped(self) -> bool:
        return self._stopped

    def stop(self) -> None:
        if self._stopped:
            return
        self._stopped = True
        self._on_stop()

    def _on_enabled(self, enabled: bool) -> None:
        pass

    def _on_stop(self) -> None:
        pass

    def __repr__(self) -> str:
        return f"MediaTrack(id={self.id!r}, kind={self.kind!r}, enabled={self._enabled})"


@dataclass
class LocalMediaHandle:
    tracks: list = field(default_factory=list)

    def audio_tracks(self) -> list:
        return [t for t in self.tracks if t.kind == AUDIO]

    def video_tracks(self) -> list:
        return [t for t in self.tracks if t.kind == VIDEO]

    def stop_all(self) -> None:
        for track in self.tracks:
            track.stop()


class MediaDevices(Protocol):
    async def get_user_media(self, constraints: dict) -> LocalMediaHandle:
        """Capture local tracks or raise a ``MediaCaptureError`` subclass."""
        ...


class PreviewSurface(Protocol):
    def bind(self, handle: Optional[LocalMediaHandle], muted: bool = True) -> None:
        ...


class MediaElement(Protocol):
    """The parts of an HTML media element the synchronizer touches."""

    src: str
    current_time: float
    paused: bool

    async def play(self) -> None:
        ...

    def pause(self) -> None:
        ...


@dataclass
class RemoteStream:
    """What the page should play as the remote party."""

    video_url: str = PLACEHOLDER_VIDEO_URL
    audio_url: Optional[str] = None

    @property
    def has_separate_audio(self) -> bool:
        return bool(self.audio_url)

    def to_dict(self) -> dict:
        return {
            "video_url": self.video_url,
            "audio_url": self.audio_url,
            # the video is always muted when a separate audio track exists
            "video_muted": True,
            "loop": True,
        }
