import asyncio
import logging
from typing import Awaitable, Callable, Mapping, Optional

from callroom.call_session import TICK_INTERVAL_S, CallSessionController
from callroom.catalog import catalog_payload, parse_channel
from callroom.chat_flow import COMPOSE_DELAY_RANGE, ChatEvent, ChatFlowRunner, EventKind, can_continue
from callroom.duration import DurationLimitResolver
from callroom.media import (
    AUDIO,
    PLACEHOLDER_VIDEO_URL,
    VIDEO,
    CaptureCancelledError,
    DeviceUnavailableError,
    LocalMediaHandle,
    MediaTrack,
    capture_error_from_name,
)
from callroom.prompts import (
    HANGUP_REASON,
    PERMISSION_ERROR_TITLE,
    format_duration,
    get_bot_message,
    page_meta,
    summary_lines,
)
from callroom.remote_config import CallConfigClient, RemoteMediaConfig
from callroom.session import CallSessionState, ChatState

logger = logging.getLogger(__name__)

CAPTURE_TIMEOUT_S = 120.0

CHAT_MESSAGES = {
    "select_package": EventKind.SELECT_PACKAGE,
    "select_channel": EventKind.SELECT_CHANNEL,
    "input_contact": EventKind.INPUT_CONTACT,
    "continue": EventKind.CONTINUE,
    "back": EventKind.BACK,
    "generate": EventKind.GENERATE,
    "create_another": EventKind.CREATE_ANOTHER,
}


class Outbox:
    """Ordered queue of messages for the page; drained by the room's sender task."""

    def __init__(self):
        self._queue: asyncio.Queue = asyncio.Queue()

    def put(self, message: dict) -> None:
        self._queue.put_nowait(message)

    async def get(self) -> dict:
        return await self._queue.get()


class RoomTrack(MediaTrack):
    """A track captured in the browser; enable/stop are forwarded to the page."""

    def __init__(self, track_id: str, kind: str, outbox: Outbox):
        super().__init__(track_id, kind)
        self._outbox = outbox

    def _on_enabled(self, enabled: bool) -> None:
        self._outbox.put({"type": "track", "id": self.id, "action": "enable", "enabled": enabled})

    def _on_stop(self) -> None:
        self._outbox.put({"type": "track", "id": self.id, "action": "stop"})


class RoomMediaDevices:
    """Asks the page for getUserMedia and waits for its ``capture_result``."""

    def __init__(self, outbox: Outbox, timeout: float = CAPTURE_TIMEOUT_S):
        self._outbox = outbox
        self.timeout = timeout
        self._pending: Optional[asyncio.Future] = None

    async def get_user_media(self, constraints: dict) -> LocalMediaHandle:
        if self._pending is not None and not self._pending.done():
            raise CaptureCancelledError("another capture request is in flight")
        future = asyncio.get_running_loop().create_future()
        self._pending = future
        self._outbox.put({"type": "capture_request", "constraints": constraints})
        try:
            result = await asyncio.wait_for(future, self.timeout)
        except asyncio.TimeoutError:
            raise CaptureCancelledError("no capture result from page") from None
        finally:
            self._pending = None

        if not result.get("ok"):
            raise capture_error_from_name(
                str(result.get("error") or ""), str(result.get("message") or "")
            )
        raw_tracks = result.get("tracks")
        if not isinstance(raw_tracks, list) or not all(isinstance(t, dict) for t in raw_tracks):
            logger.warning("Malformed capture_result tracks: %r", raw_tracks)
            raise DeviceUnavailableError("page reported capture without a usable track list")
        tracks = [
            RoomTrack(str(t.get("id", "")), t["kind"], self._outbox)
            for t in raw_tracks
            if t.get("kind") in (AUDIO, VIDEO)
        ]
        return LocalMediaHandle(tracks=tracks)

    def resolve(self, result: dict) -> bool:
        if self._pending is None or self._pending.done():
            logger.warning("capture_result with no pending request")
            return False
        self._pending.set_result(result)
        return True

    def cancel(self) -> None:
        if self._pending is not None and not self._pending.done():
            self._pending.set_exception(CaptureCancelledError("room closed"))


class RoomPreview:
    def __init__(self, outbox: Outbox):
        self._outbox = outbox

    def bind(self, handle: Optional[LocalMediaHandle], muted: bool = True) -> None:
        track_ids = [t.id for t in handle.tracks] if handle else []
        self._outbox.put({"type": "preview", "track_ids": track_ids, "muted": muted})


class RoomAudioElement:
    """The page's separate remote ``<audio>`` element."""

    def __init__(self, src: str, outbox: Outbox):
        self.src = src
        self.paused = True
        self._current_time = 0.0
        self._outbox = outbox

    @property
    def current_time(self) -> float:
        return self._current_time

    @current_time.setter
    def current_time(self, value: float) -> None:
        self._current_time = float(value)
        self._outbox.put({"type": "audio", "action": "seek", "time": self._current_time})

    async def play(self) -> None:
        if not self.paused:
            return
        self.paused = False
        self._outbox.put({"type": "audio", "action": "play", "src": self.src})

    def pause(self) -> None:
        if self.paused:
            return
        self.paused = True
        self._outbox.put({"type": "audio", "action": "pause"})

    def playback_blocked(self) -> None:
        # reported asynchronously by the page; accepted silently
        self.paused = True


class Room:
    """One page's worth of state: the guided chat or the call, never shared.

    Direct call mode (valid ``seconds`` in the entry link) auto-starts the
    call; guided flow mode drives the chat until it hands off a new link.
    """

    def __init__(
        self,
        query: Mapping[str, str],
        site_id: str,
        origin: str,
        config_client: Optional[CallConfigClient] = None,
        placeholder_video_url: str = PLACEHOLDER_VIDEO_URL,
        tick_interval: float = TICK_INTERVAL_S,
        compose_delay_range: tuple[float, float] = COMPOSE_DELAY_RANGE,
        capture_timeout: float = CAPTURE_TIMEOUT_S,
    ):
        self.site_id = site_id
        self.origin = origin.rstrip("/")
        self.config_client = config_client
        self.config: Optional[RemoteMediaConfig] = None
        self.outbox = Outbox()
        self.resolver = DurationLimitResolver.from_query(query)

        self.devices = RoomMediaDevices(self.outbox, timeout=capture_timeout)
        self.call = CallSessionController(
            devices=self.devices,
            resolver=self.resolver,
            preview=RoomPreview(self.outbox),
            audio_element_factory=lambda src: RoomAudioElement(src, self.outbox),
            placeholder_video_url=placeholder_video_url,
            tick_interval=tick_interval,
        )
        self.call.add_listener(self._on_call_change)

        self.chat: Optional[ChatFlowRunner] = None
        if not self.resolver.explicit_duration_present:
            self.chat = ChatFlowRunner(
                open_link=self._open_link,
                on_change=self._on_chat_change,
                on_notify=self._toast,
                delay_range=compose_delay_range,
            )

        self._tasks: set[asyncio.Task] = set()
        self._last_permission_error: Optional[str] = None
        self._closed = False

    @property
    def mode(self) -> str:
        return "direct" if self.resolver.explicit_duration_present else "guided"

    # ── Outbound ──

    def snapshot(self) -> dict:
        message = {
            "type": "state",
            "mode": self.mode,
            "call": self._call_snapshot(self.call.session),
        }
        if self.chat is not None:
            message["chat"] = self._chat_snapshot(self.chat.state)
        return message

    def _call_snapshot(self, session: CallSessionState) -> dict:
        data = session.to_dict()
        data["clock"] = format_duration(session.elapsed_seconds)
        data["remote_stream"] = self.call.remote_stream.to_dict() if self.call.remote_stream else None
        return data

    def _chat_snapshot(self, chat: ChatState) -> dict:
        data = chat.to_dict()
        data["bot_message"] = get_bot_message(chat)
        data["can_continue"] = can_continue(chat)
        data["summary"] = summary_lines(chat)
        if chat.step.offers_packages:
            data["packages"] = catalog_payload()
        if chat.channel is not None:
            data["input_label"] = chat.channel.input_label
            data["placeholder"] = chat.channel.placeholder
        return data

    def push_state(self) -> None:
        if not self._closed:
            self.outbox.put(self.snapshot())

    def _on_call_change(self, session: CallSessionState) -> None:
        if session.permission_error != self._last_permission_error:
            self._last_permission_error = session.permission_error
            if session.permission_error:
                self._toast({
                    "title": PERMISSION_ERROR_TITLE,
                    "description": session.permission_error,
                    "variant": "destructive",
                })
        self.push_state()

    def _on_chat_change(self, chat: ChatState) -> None:
        self.push_state()

    def _toast(self, notify: dict) -> None:
        self.outbox.put({"type": "toast", **notify})

    async def _open_link(self, url: str) -> None:
        self.outbox.put({"type": "open_link", "url": url, "target": "_blank"})

    # ── Lifecycle ──

    def _spawn(self, coro: Awaitable) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Room task failed: %s", task.exception())

    async def load_config(self) -> None:
        if self.config_client is None:
            return
        config = await self.config_client.fetch(self.site_id)
        if self._closed or config is None:
            return
        self.config = config
        self.resolver.apply_remote_config(config)
        self.call.set_remote_config(config)
        self.push_state()

    async def run(
        self,
        send: Callable[[dict], Awaitable[None]],
        receive: Callable[[], Awaitable[dict]],
    ) -> None:
        """Serve the page until ``receive`` raises (disconnect)."""
        sender = asyncio.create_task(self._send_loop(send))
        self.outbox.put({"type": "page_meta", **page_meta(self._canonical_url())})
        self.push_state()
        self._spawn(self.load_config())
        self._spawn(self.call.init())
        try:
            while True:
                message = await receive()
                await self.handle(message)
        finally:
            await self.close()
            sender.cancel()
            await asyncio.gather(sender, return_exceptions=True)

    async def _send_loop(self, send: Callable[[dict], Awaitable[None]]) -> None:
        while True:
            message = await self.outbox.get()
            await send(message)

    def _canonical_url(self) -> str:
        seconds = self.resolver.limit_seconds if self.resolver.explicit_duration_present else None
        return f"{self.origin}/?seconds={seconds}" if seconds else f"{self.origin}/"

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.devices.cancel()
        self.call.dispose()
        if self.chat is not None:
            await self.chat.close()
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("Room closed for %s (%s mode)", self.site_id, self.mode)

    # ── Inbound ──

    async def handle(self, message: dict) -> None:
        kind = message.get("type", "") if isinstance(message, dict) else ""

        if kind in CHAT_MESSAGES:
            await self._handle_chat(kind, message)
        elif kind == "capture_result":
            self.devices.resolve(message)
        elif kind == "start_call":
            self._spawn(self.call.start())
        elif kind == "end_call":
            self.call.end(HANGUP_REASON)
        elif kind == "toggle_mic":
            self.call.toggle_mic()
        elif kind == "toggle_camera":
            self.call.toggle_camera()
        elif kind in ("video_play", "video_pause", "video_timeupdate", "audio_play_failed"):
            await self._handle_remote_media(kind, message)
        else:
            logger.warning("Unknown room message type %r", kind)
            self.outbox.put({"type": "error", "message": f"unknown message type: {kind!r}"})

    async def _handle_chat(self, kind: str, message: dict) -> None:
        if self.chat is None:
            self.outbox.put({"type": "error", "message": "chat is not available in direct call mode"})
            return
        event = ChatEvent(
            kind=CHAT_MESSAGES[kind],
            package_id=str(message.get("package_id", "")),
            channel=parse_channel(str(message.get("channel", ""))),
            value=str(message.get("value", "")),
            origin=self.origin,
        )
        await self.chat.dispatch(event)

    async def _handle_remote_media(self, kind: str, message: dict) -> None:
        sync = self.call.synchronizer
        if sync is None:
            return
        if kind == "video_play":
            await sync.handle_play()
        elif kind == "video_pause":
            sync.handle_pause()
        elif kind == "video_timeupdate":
            try:
                current_time = float(message.get("current_time", 0.0))
            except (TypeError, ValueError):
                return
            await sync.handle_time_update(current_time, bool(message.get("paused", False)))
        elif kind == "audio_play_failed":
            logger.debug("Page reported blocked remote audio playback")
            if isinstance(sync.audio, RoomAudioElement):
                sync.audio.playback_blocked()
