import asyncio
from unittest.mock import AsyncMock

import pytest

from callroom.remote_config import RemoteMediaConfig
from callroom.room import Room

ORIGIN = "https://room.example.com"
TRACKS = [{"id": "mic-1", "kind": "audio"}, {"id": "cam-1", "kind": "video"}]


class PageClosed(Exception):
    pass


class FakePage:
    """Plays the browser side of the room socket."""

    def __init__(self, room: Room):
        self.room = room
        self.inbox: asyncio.Queue = asyncio.Queue()
        self.received: list[dict] = []
        self._outbound: asyncio.Queue = asyncio.Queue()
        self.task = None

    async def _send(self, message):
        self.received.append(message)
        await self._outbound.put(message)

    async def _receive(self):
        message = await self.inbox.get()
        if message is None:
            raise PageClosed()
        return message

    def open(self):
        self.task = asyncio.create_task(self.room.run(self._send, self._receive))
        return self

    async def say(self, type_, **fields):
        await self.inbox.put({"type": type_, **fields})

    async def expect(self, predicate, timeout=1.0):
        async def _wait():
            while True:
                message = await self._outbound.get()
                if predicate(message):
                    return message
        return await asyncio.wait_for(_wait(), timeout)

    async def expect_type(self, type_, timeout=1.0):
        return await self.expect(lambda m: m["type"] == type_, timeout)

    async def expect_call_phase(self, phase, timeout=1.0):
        return await self.expect(
            lambda m: m["type"] == "state" and m["call"]["phase"] == phase, timeout
        )

    async def expect_chat_step(self, step, timeout=1.0):
        return await self.expect(
            lambda m: m["type"] == "state" and m.get("chat", {}).get("step") == step, timeout
        )

    async def close(self):
        await self.inbox.put(None)
        with pytest.raises(PageClosed):
            await self.task


def make_room(query=None, config=None, **kwargs):
    client = None
    if config is not None:
        client = AsyncMock()
        client.fetch.return_value = config
    kwargs.setdefault("tick_interval", 3600.0)
    kwargs.setdefault("compose_delay_range", (0.01, 0.02))
    return Room(
        query=query or {},
        site_id="room.example.com",
        origin=ORIGIN,
        config_client=client,
        **kwargs,
    )


class TestDirectMode:
    @pytest.mark.asyncio
    async def test_auto_starts_and_runs_call(self):
        page = FakePage(make_room({"seconds": "600"})).open()
        meta = await page.expect_type("page_meta")
        assert meta["canonical"] == f"{ORIGIN}/?seconds=600"

        request = await page.expect_type("capture_request")
        assert request["constraints"]["video"] == {"width": 640, "height": 360}
        await page.say("capture_result", ok=True, tracks=TRACKS)

        state = await page.expect_call_phase("active")
        assert state["mode"] == "direct"
        assert "chat" not in state
        assert state["call"]["duration_limit_seconds"] == 600
        assert state["call"]["remote_stream"]["video_url"]

        preview = [m for m in page.received if m["type"] == "preview"][-1]
        assert preview == {"type": "preview", "track_ids": ["mic-1", "cam-1"], "muted": True}

        await page.say("toggle_mic")
        msg = await page.expect_type("track")
        assert msg == {"type": "track", "id": "mic-1", "action": "enable", "enabled": False}

        await page.say("end_call")
        await page.expect_call_phase("ended")
        stops = [m["id"] for m in page.received if m["type"] == "track" and m["action"] == "stop"]
        assert sorted(stops) == ["cam-1", "mic-1"]
        await page.close()

    @pytest.mark.asyncio
    async def test_permission_error_toasts_and_stays_idle(self):
        page = FakePage(make_room({"seconds": "120"})).open()
        await page.expect_type("capture_request")
        await page.say("capture_result", ok=False, error="NotAllowedError")
        toast = await page.expect_type("toast")
        assert toast["variant"] == "destructive"
        state = await page.expect_call_phase("idle")
        assert state["call"]["permission_error"]
        await page.close()

    @pytest.mark.asyncio
    async def test_capture_result_without_track_list_returns_to_idle(self):
        page = FakePage(make_room({"seconds": "120"})).open()
        await page.expect_type("capture_request")
        await page.say("capture_result", ok=True, tracks=None)
        state = await page.expect_call_phase("idle")
        assert state["call"]["permission_error"]

        await page.say("start_call")
        await page.expect_type("capture_request")
        await page.say("capture_result", ok=True, tracks=["mic-1"])
        await page.expect_call_phase("idle")

        await page.say("start_call")
        await page.expect_type("capture_request")
        await page.say("capture_result", ok=True, tracks=TRACKS)
        await page.expect_call_phase("active")
        await page.close()

    @pytest.mark.asyncio
    async def test_chat_messages_rejected_in_direct_mode(self):
        page = FakePage(make_room({"seconds": "120"})).open()
        await page.say("select_package", package_id="p3")
        error = await page.expect_type("error")
        assert "direct" in error["message"]
        await page.close()

    @pytest.mark.asyncio
    async def test_disconnect_during_call_releases_tracks(self):
        room = make_room({"seconds": "600"})
        page = FakePage(room).open()
        await page.expect_type("capture_request")
        await page.say("capture_result", ok=True, tracks=TRACKS)
        await page.expect_call_phase("active")
        tracks = room.call.handle.tracks
        await page.close()
        assert room.call.disposed
        assert all(t.stopped for t in tracks)


class TestGuidedMode:
    @pytest.mark.asyncio
    async def test_walks_chat_to_handoff_link(self):
        page = FakePage(make_room()).open()
        state = await page.expect_chat_step("intro")
        assert state["mode"] == "guided"
        assert [p["id"] for p in state["chat"]["packages"]] == ["p3", "p5", "p10"]

        await page.say("select_package", package_id="p10")
        await page.expect_chat_step("contact")

        await page.say("select_channel", channel="email")
        await page.say("input_contact", value="a@b.com")
        state = await page.expect(
            lambda m: m["type"] == "state" and m.get("chat", {}).get("can_continue")
        )
        assert state["chat"]["placeholder"] == "seuemail@exemplo.com"

        await page.say("continue")
        state = await page.expect_chat_step("summary")
        assert "R$ 24,90" in state["chat"]["summary"][0]

        await page.say("generate")
        link = await page.expect_type("open_link")
        assert link["url"] == f"{ORIGIN}/?seconds=600"
        assert link["target"] == "_blank"
        assert page.room.chat.state.step.value == "finished"
        await page.close()

    @pytest.mark.asyncio
    async def test_no_auto_start_in_guided_mode(self):
        room = make_room()
        page = FakePage(room).open()
        await page.expect_chat_step("intro")
        await asyncio.sleep(0.05)
        assert not any(m["type"] == "capture_request" for m in page.received)
        await page.close()

    @pytest.mark.asyncio
    async def test_remote_config_drives_limit_and_audio_sync(self):
        config = RemoteMediaConfig(
            video_url="https://cdn.example.com/v.mp4",
            audio_url="https://cdn.example.com/a.mp3",
            duration_seconds=900,
        )
        room = make_room(config=config)
        page = FakePage(room).open()
        await page.expect_chat_step("intro")
        await asyncio.sleep(0.05)
        room.config_client.fetch.assert_awaited_once_with("room.example.com")
        assert room.resolver.effective_limit_seconds == 900

        await page.say("start_call")
        await page.expect_type("capture_request")
        await page.say("capture_result", ok=True, tracks=TRACKS)
        state = await page.expect_call_phase("active")
        assert state["call"]["duration_limit_seconds"] == 900
        assert state["call"]["remote_stream"]["audio_url"] == "https://cdn.example.com/a.mp3"

        await page.say("video_timeupdate", current_time=4.5, paused=False)
        seek = await page.expect(lambda m: m["type"] == "audio" and m["action"] == "seek")
        assert seek["time"] == 4.5
        await page.expect(lambda m: m["type"] == "audio" and m["action"] == "play")

        await page.say("video_pause")
        await page.expect(lambda m: m["type"] == "audio" and m["action"] == "pause")
        await page.close()

    @pytest.mark.asyncio
    async def test_unknown_message_type_reports_error(self):
        page = FakePage(make_room()).open()
        await page.say("dance")
        error = await page.expect_type("error")
        assert "dance" in error["message"]
        await page.close()
