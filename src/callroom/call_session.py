import asyncio
import logging
from typing import Callable, Optional

from callroom.duration import DurationLimitResolver
from callroom.media import (
    CAPTURE_CONSTRAINTS,
    PLACEHOLDER_VIDEO_URL,
    CaptureCancelledError,
    DeviceUnavailableError,
    LocalMediaHandle,
    MediaDevices,
    MediaElement,
    PermissionDeniedError,
    PreviewSurface,
    RemoteStream,
)
from callroom.media_sync import RemoteMediaSynchronizer
from callroom.prompts import PERMISSION_ERROR_MESSAGE
from callroom.remote_config import RemoteMediaConfig
from callroom.session import CallSessionState
from callroom.states import CallPhase

logger = logging.getLogger(__name__)

TICK_INTERVAL_S = 1.0

Listener = Callable[[CallSessionState], None]


def _current_task() -> Optional[asyncio.Task]:
    try:
        return asyncio.current_task()
    except RuntimeError:
        return None


class CallSessionController:
    """Owns one simulated call: local capture, countdown and in-call controls.

    idle -> connecting -> active -> ended, and connecting -> idle when the
    capture request fails.  The countdown ticks once per ``tick_interval``;
    every tick re-checks the phase, so a hangup that lands while a tick is
    already scheduled turns that tick into a no-op.

    ``init()`` and ``dispose()`` bracket the controller's lifetime and run at
    most once each.  Use it as an async context manager to get both.
    """

    def __init__(
        self,
        devices: MediaDevices,
        resolver: DurationLimitResolver,
        preview: Optional[PreviewSurface] = None,
        audio_element_factory: Optional[Callable[[str], MediaElement]] = None,
        remote_config: Optional[RemoteMediaConfig] = None,
        placeholder_video_url: str = PLACEHOLDER_VIDEO_URL,
        tick_interval: float = TICK_INTERVAL_S,
    ):
        self.devices = devices
        self.resolver = resolver
        self.preview = preview
        self.audio_element_factory = audio_element_factory
        self.remote_config = remote_config
        self.placeholder_video_url = placeholder_video_url
        self.tick_interval = tick_interval

        self.session = CallSessionState()
        self.remote_stream: Optional[RemoteStream] = None
        self.synchronizer: Optional[RemoteMediaSynchronizer] = None

        self._handle: Optional[LocalMediaHandle] = None
        self._timer_task: Optional[asyncio.Task] = None
        self._initialized = False
        self._disposed = False
        self._listeners: list[Listener] = []
        self._ended_listeners: list[Listener] = []

    @property
    def phase(self) -> CallPhase:
        return self.session.phase

    @property
    def handle(self) -> Optional[LocalMediaHandle]:
        return self._handle

    @property
    def disposed(self) -> bool:
        return self._disposed

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def on_ended(self, listener: Listener) -> None:
        self._ended_listeners.append(listener)

    def _changed(self) -> None:
        for listener in list(self._listeners):
            listener(self.session)

    # ── Lifecycle ──

    async def init(self) -> None:
        if self._initialized:
            return
        self._initialized = True
        if self.resolver.explicit_duration_present:
            logger.info(
                "Entry link carries %ss, starting call automatically",
                self.resolver.limit_seconds,
            )
            await self.start()

    def dispose(self) -> None:
        if self._disposed:
            return
        self._disposed = True
        if self.session.phase in (CallPhase.CONNECTING, CallPhase.ACTIVE):
            self.end("page teardown")
        else:
            self._release()
        self._listeners.clear()
        self._ended_listeners.clear()

    async def __aenter__(self) -> "CallSessionController":
        await self.init()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.dispose()

    # ── Transitions ──

    async def start(self) -> bool:
        """Capture camera and microphone and enter the call. Returns True once active."""
        if self._disposed:
            raise RuntimeError("call session controller already disposed")
        if not self.session.phase.can_start:
            logger.warning("start() ignored in phase %s", self.session.phase.value)
            return False

        self.session.phase = CallPhase.CONNECTING
        self.session.permission_error = None
        self.session.end_reason = None
        self._changed()

        try:
            handle = await self.devices.get_user_media(CAPTURE_CONSTRAINTS)
        except (PermissionDeniedError, DeviceUnavailableError) as e:
            logger.error("Camera/microphone access failed: %s", e)
            if self.session.phase is CallPhase.CONNECTING:
                self.session.phase = CallPhase.IDLE
                self.session.permission_error = PERMISSION_ERROR_MESSAGE
                self._changed()
            return False
        except CaptureCancelledError as e:
            logger.info("Capture request cancelled: %s", e)
            if self.session.phase is CallPhase.CONNECTING:
                self.session.phase = CallPhase.IDLE
                self._changed()
            return False

        if self.session.phase is not CallPhase.CONNECTING:
            # ended or torn down while the capture prompt was open
            logger.info("Call left connecting during capture, releasing tracks")
            handle.stop_all()
            return False

        self._handle = handle
        self.session.mic_enabled = True
        self.session.camera_enabled = True
        if self.preview is not None:
            self.preview.bind(handle, muted=True)

        self.session.duration_limit_seconds = self.resolver.effective_limit_seconds
        self.session.elapsed_seconds = 0
        self.session.phase = CallPhase.ACTIVE
        self._attach_remote_stream()
        self._start_timer()
        logger.info(
            "Call active: %d local tracks, limit %ss",
            len(handle.tracks),
            self.session.duration_limit_seconds,
        )
        self._changed()
        return True

    def tick(self) -> None:
        if self.session.phase is not CallPhase.ACTIVE:
            return
        self.session.elapsed_seconds += 1
        if self.session.elapsed_seconds >= self.session.duration_limit_seconds:
            logger.info("Duration limit of %ss reached", self.session.duration_limit_seconds)
            self.end()
            return
        self._changed()

    def end(self, reason: Optional[str] = None) -> None:
        previous = self.session.phase
        if previous is CallPhase.IDLE:
            # nothing started, so there is no call to end
            self._release()
            return
        elapsed = self.session.elapsed_seconds

        self.session.phase = CallPhase.ENDED
        self.session.elapsed_seconds = 0
        if reason is not None:
            self.session.end_reason = reason
        self._release()

        if previous is CallPhase.ENDED:
            return
        logger.info("Call ended after %ss (%s)", elapsed, reason or "no reason given")
        for listener in list(self._ended_listeners):
            listener(self.session)
        self._changed()

    # ── In-call controls ──

    def toggle_mic(self) -> bool:
        if self._handle is None:
            logger.debug("toggle_mic ignored, no local media")
            return self.session.mic_enabled
        enabled = not self.session.mic_enabled
        self.session.mic_enabled = enabled
        for track in self._handle.audio_tracks():
            track.enabled = enabled
        self._changed()
        return enabled

    def toggle_camera(self) -> bool:
        if self._handle is None:
            logger.debug("toggle_camera ignored, no local media")
            return self.session.camera_enabled
        enabled = not self.session.camera_enabled
        self.session.camera_enabled = enabled
        for track in self._handle.video_tracks():
            track.enabled = enabled
        self._changed()
        return enabled

    # ── Remote stream ──

    def set_remote_config(self, config: Optional[RemoteMediaConfig]) -> None:
        self.remote_config = config
        if self.session.phase is CallPhase.ACTIVE:
            self._detach_remote_stream()
            self._attach_remote_stream()
            self._changed()

    def _attach_remote_stream(self) -> None:
        config = self.remote_config or RemoteMediaConfig()
        self.remote_stream = RemoteStream(
            video_url=config.video_url or self.placeholder_video_url,
            audio_url=config.audio_url,
        )
        if self.remote_stream.has_separate_audio and self.audio_element_factory is not None:
            audio = self.audio_element_factory(self.remote_stream.audio_url)
            self.synchronizer = RemoteMediaSynchronizer(audio)

    def _detach_remote_stream(self) -> None:
        if self.synchronizer is not None:
            self.synchronizer.detach()
            self.synchronizer = None
        self.remote_stream = None

    # ── Timer and resource release ──

    def _start_timer(self) -> None:
        self._cancel_timer()
        self._timer_task = asyncio.create_task(self._run_timer())

    async def _run_timer(self) -> None:
        while self.session.phase is CallPhase.ACTIVE:
            await asyncio.sleep(self.tick_interval)
            self.tick()

    def _cancel_timer(self) -> None:
        task, self._timer_task = self._timer_task, None
        if task is None or task.done():
            return
        # a tick that ends the call runs inside the timer task; that loop exits on its own
        if task is not _current_task():
            task.cancel()

    def _release_media(self) -> None:
        handle, self._handle = self._handle, None
        if handle is None:
            return
        handle.stop_all()
        if self.preview is not None:
            self.preview.bind(None)

    def _release(self) -> None:
        self._cancel_timer()
        self._release_media()
        self._detach_remote_stream()
