import logging

from callroom.media import MediaElement, MediaPlaybackError

logger = logging.getLogger(__name__)


class RemoteMediaSynchronizer:
    """Mirror the remote video's play state and position onto a separate audio element.

    Only used when the site configures an audio source apart from the video.
    Position is copied on every time update; drift between updates is left
    alone.  Audio that refuses to start (autoplay restrictions) never stops
    the video from playing.
    """

    def __init__(self, audio: MediaElement):
        self.audio = audio
        self._attached = True

    @property
    def attached(self) -> bool:
        return self._attached

    async def handle_play(self) -> None:
        if not self._attached:
            return
        await self._try_play()

    def handle_pause(self) -> None:
        if not self._attached:
            return
        self.audio.pause()

    async def handle_time_update(self, current_time: float, paused: bool) -> None:
        if not self._attached:
            return
        self.audio.current_time = current_time
        if paused:
            self.audio.pause()
        else:
            await self._try_play()

    def detach(self) -> None:
        if not self._attached:
            return
        self._attached = False
        self.audio.pause()

    async def _try_play(self) -> None:
        try:
            await self.audio.play()
        except MediaPlaybackError as e:
            logger.debug("Remote audio playback blocked: %s", e)
