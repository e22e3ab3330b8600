import pytest
from callroom.chat_flow import ChatFlowController
from callroom.duration import DurationLimitResolver
from callroom.media import AUDIO, VIDEO, LocalMediaHandle, MediaPlaybackError, MediaTrack


class FakeDevices:
    """In-memory getUserMedia: returns fresh tracks or raises ``error``."""

    def __init__(self, error=None):
        self.error = error
        self.requests = []
        self.handles = []

    async def get_user_media(self, constraints):
        self.requests.append(constraints)
        if self.error is not None:
            raise self.error
        n = len(self.handles)
        handle = LocalMediaHandle(tracks=[
            MediaTrack(f"audio-{n}", AUDIO),
            MediaTrack(f"video-{n}", VIDEO),
        ])
        self.handles.append(handle)
        return handle


class FakePreview:
    def __init__(self):
        self.bindings = []

    def bind(self, handle, muted=True):
        self.bindings.append((handle, muted))


class FakeAudioElement:
    def __init__(self, src="", block_play=False):
        self.src = src
        self.current_time = 0.0
        self.paused = True
        self.block_play = block_play
        self.play_calls = 0

    async def play(self):
        self.play_calls += 1
        if self.block_play:
            raise MediaPlaybackError("autoplay blocked")
        self.paused = False

    def pause(self):
        self.paused = True


@pytest.fixture
def devices():
    return FakeDevices()


@pytest.fixture
def preview():
    return FakePreview()


@pytest.fixture
def resolver():
    return DurationLimitResolver()


@pytest.fixture
def machine():
    return ChatFlowController()
