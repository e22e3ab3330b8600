import pytest

from callroom.media_sync import RemoteMediaSynchronizer
from conftest import FakeAudioElement


class TestRemoteMediaSynchronizer:
    @pytest.mark.asyncio
    async def test_play_and_pause_propagate(self):
        audio = FakeAudioElement("https://cdn.example.com/a.mp3")
        sync = RemoteMediaSynchronizer(audio)
        await sync.handle_play()
        assert audio.paused is False
        sync.handle_pause()
        assert audio.paused is True

    @pytest.mark.asyncio
    async def test_time_update_copies_position(self):
        audio = FakeAudioElement()
        sync = RemoteMediaSynchronizer(audio)
        await sync.handle_time_update(12.5, paused=False)
        assert audio.current_time == 12.5
        assert audio.paused is False
        await sync.handle_time_update(13.0, paused=True)
        assert audio.current_time == 13.0
        assert audio.paused is True

    @pytest.mark.asyncio
    async def test_blocked_playback_is_swallowed(self):
        audio = FakeAudioElement(block_play=True)
        sync = RemoteMediaSynchronizer(audio)
        await sync.handle_play()
        await sync.handle_time_update(3.0, paused=False)
        assert audio.play_calls == 2
        assert audio.current_time == 3.0
        assert audio.paused is True

    @pytest.mark.asyncio
    async def test_detached_synchronizer_ignores_events(self):
        audio = FakeAudioElement()
        sync = RemoteMediaSynchronizer(audio)
        await sync.handle_play()
        sync.detach()
        assert audio.paused is True
        await sync.handle_time_update(40.0, paused=False)
        assert audio.current_time == 0.0
        assert audio.paused is True
        sync.detach()  # idempotent
