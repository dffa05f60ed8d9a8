import logging
from typing import Callable, Optional
from .audio import AudioPlayer, PlaybackHandle, decode_base64_audio
from .errors import AnalysisFailure, InvalidStateError, NarrationFailure
from .generation import GenerationAdapter
from .media import load_image
from .models import (
    BUFFERING, IDLE, PLAYING, PlaybackState, RawImage, StoryRecord, StorySnapshot, StoryStatus,
)
from .prompts import ANALYSIS_ERROR_MESSAGE, NARRATION_ERROR_MESSAGE

logger = logging.getLogger(__name__)


class StorySession:
    """
    State for one image and the story written from it.

    Main states: empty -> loading -> ready | error. Narration is tracked separately
    (idle -> buffering -> playing -> idle). Each analysis and each narration request
    takes a new generation number; results that arrive for an older generation are
    dropped, so a regenerate or new upload always wins over an in-flight call.
    """

    def __init__(self, adapter: GenerationAdapter, player_factory: Callable[[], AudioPlayer] = AudioPlayer):
        self._adapter = adapter
        self._player_factory = player_factory
        self._player: Optional[AudioPlayer] = None
        self._handle: Optional[PlaybackHandle] = None
        self._generation = 0
        self._narration_generation = 0

        self.status = StoryStatus.EMPTY
        self.image: Optional[RawImage] = None
        self.story: Optional[StoryRecord] = None
        self.error: Optional[str] = None
        self.playback: PlaybackState = IDLE
        self.narration_error: Optional[str] = None

    # ---------- story ----------

    async def upload_image(self, data: bytes, mime_type: Optional[str] = None):
        image = load_image(data, mime_type)
        self.image = image
        await self._analyze()

    async def retry(self):
        if self.status != StoryStatus.ERROR or self.image is None:
            raise InvalidStateError(f"cannot retry while {self.status.value}")
        await self._analyze()

    async def regenerate(self):
        if self.image is None:
            raise InvalidStateError("no image to regenerate from")
        await self._analyze()

    def clear_image(self):
        self._generation += 1
        self._reset_narration()
        self.image = None
        self.story = None
        self.error = None
        self.status = StoryStatus.EMPTY

    async def _analyze(self):
        self._generation += 1
        generation = self._generation
        image = self.image
        self._reset_narration()
        self.story = None
        self.error = None
        self.status = StoryStatus.LOADING
        logger.info(f"Analysis #{generation} started for {image.mime_type} image")

        try:
            story = await self._adapter.analyze_image(image.data, image.mime_type)
        except AnalysisFailure as e:
            if generation != self._generation:
                logger.info(f"Ignoring failure of superseded analysis #{generation}")
                return
            logger.error(f"Analysis #{generation} failed: {e}")
            self.status = StoryStatus.ERROR
            self.error = ANALYSIS_ERROR_MESSAGE
            return

        if generation != self._generation:
            logger.info(f"Discarding stale result of analysis #{generation}")
            return
        self.story = story
        self.status = StoryStatus.READY
        logger.info(f"Analysis #{generation} ready")

    # ---------- narration ----------

    async def toggle_narration(self):
        if self.playback.playing:
            self.stop_narration()
            return
        if self.playback.buffering:
            logger.info("Narration already being prepared, ignoring request")
            return
        if self.story is None:
            raise InvalidStateError("no story to narrate")

        self._narration_generation += 1
        generation = self._narration_generation
        story = self.story
        self.playback = BUFFERING
        self.narration_error = None

        try:
            player = self._ensure_player()
            payload = await self._adapter.synthesize_speech(story.opening_paragraph)
            buffer = await player.decode_audio_data(decode_base64_audio(payload))
            if generation != self._narration_generation:
                logger.info(f"Discarding audio of superseded narration #{generation}")
                return
            self._stop_active_playback()
            handle = await player.play(buffer)
        except NarrationFailure as e:
            logger.error(f"Narration #{generation} failed: {e}")
            self._narration_failed(generation)
            return
        except Exception as e:
            logger.error(f"Narration #{generation} failed unexpectedly: {str(e)}")
            import traceback
            logger.error(f"Full traceback: {traceback.format_exc()}")
            self._narration_failed(generation)
            return

        handle.on_complete(self._on_playback_complete)
        self._handle = handle
        self.playback = PLAYING

    def stop_narration(self):
        self._narration_generation += 1
        self._stop_active_playback()
        self.playback = IDLE

    def _narration_failed(self, generation: int):
        if generation != self._narration_generation:
            logger.info(f"Ignoring failure of superseded narration #{generation}")
            return
        self.playback = IDLE
        self.narration_error = NARRATION_ERROR_MESSAGE

    def _on_playback_complete(self, handle: PlaybackHandle):
        if handle is self._handle:
            self._handle = None
            self.playback = IDLE

    def _ensure_player(self) -> AudioPlayer:
        if self._player is None:
            self._player = self._player_factory()
            logger.info("Audio player created")
        return self._player

    def _stop_active_playback(self):
        if self._handle is not None:
            self._player.stop(self._handle)
            self._handle = None

    def _reset_narration(self):
        self.stop_narration()
        self.narration_error = None

    # ---------- views ----------

    @property
    def active_handle(self) -> Optional[PlaybackHandle]:
        return self._handle

    def snapshot(self) -> StorySnapshot:
        return StorySnapshot(
            status=self.status,
            story=self.story,
            error=self.error,
            playback=self.playback,
            narration_error=self.narration_error,
            has_image=self.image is not None,
            mime_type=self.image.mime_type if self.image else None,
        )

    def close(self):
        self._generation += 1
        self._reset_narration()
