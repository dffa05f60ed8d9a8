"""
Narration audio: decode speech payloads into PCM and play them on the local output.

``decode`` is a pure transform. ``AudioPlayer`` owns the output device and hands out
one ``PlaybackHandle`` per ``play`` call. It does not stop earlier handles on its
own; whoever owns the player stops the active handle before starting another.
"""
import asyncio, base64, binascii, io, logging, os
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional
from pydub import AudioSegment
from .errors import DecodeError, PlaybackError
from .settings import NARRATION_OUTPUT_FORMAT, NARRATION_CHANNELS, PLAYBACK_POLL_INTERVAL_MS

logger = logging.getLogger(__name__)

os.environ.setdefault("PYGAME_HIDE_SUPPORT_PROMPT", "1")   # hides "Hello from the pygame community"


@dataclass(frozen=True)
class PlayableBuffer:
    """Signed 16-bit little-endian PCM frames plus the format needed to play them."""
    frames: bytes
    sample_rate: int
    channels: int
    sample_width: int = 2

    @property
    def frame_count(self) -> int:
        return len(self.frames) // (self.sample_width * self.channels)

    @property
    def duration(self) -> float:
        return self.frame_count / float(self.sample_rate)


def decode_base64_audio(payload: str) -> bytes:
    try:
        return base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as e:
        raise DecodeError(f"audio payload is not valid base64: {e}") from e


def raw_pcm_rate(audio_format: Optional[str]) -> Optional[int]:
    """Sample rate of a headerless ``pcm_<rate>`` output format, None for anything else."""
    if not audio_format or not audio_format.startswith("pcm_"):
        return None
    try:
        return int(audio_format[len("pcm_"):])
    except ValueError:
        raise DecodeError(f"unknown PCM format: {audio_format}")


def decode(data: bytes, audio_format: Optional[str] = None,
           channels: int = NARRATION_CHANNELS) -> PlayableBuffer:
    """
    Turn speech bytes into a PlayableBuffer.

    ``audio_format`` is the speech service's output format name. ``pcm_<rate>`` means
    headerless 16-bit PCM and is taken as-is. Anything else (``mp3_44100_128``, or None
    to let ffmpeg detect it) goes through pydub and is normalised to 16-bit samples. RIFF/WAVE
    input always carries its own format.
    """
    if not data:
        raise DecodeError("empty audio payload")
    data = bytes(data)
    rate = raw_pcm_rate(audio_format)
    if data[:4] == b"RIFF":
        return _decode_container(data, "wav")
    if rate is None:
        return _decode_container(data, audio_format.split("_")[0] if audio_format else None)

    frame_size = 2 * channels
    if len(data) % frame_size:
        raise DecodeError(f"{len(data)} bytes is not a whole number of {frame_size}-byte PCM frames")
    return PlayableBuffer(frames=data, sample_rate=rate, channels=channels)


def _decode_container(data: bytes, fmt: Optional[str]) -> PlayableBuffer:
    try:
        segment = AudioSegment.from_file(io.BytesIO(data), format=fmt)
    except Exception as e:
        # pydub raises CouldntDecodeError, or OSError when ffmpeg is missing
        raise DecodeError(f"could not decode {fmt or 'compressed'} audio: {e}") from e

    if segment.frame_rate <= 0 or segment.channels <= 0:
        raise DecodeError(f"bad audio header: {segment.frame_rate} Hz, {segment.channels} channel(s)")
    segment = segment.set_sample_width(2)
    frames = segment.raw_data
    if not frames:
        raise DecodeError("audio holds no complete frames")
    return PlayableBuffer(frames=frames, sample_rate=segment.frame_rate, channels=segment.channels)


class PlaybackOutcome(str, Enum):
    COMPLETED = "completed"
    STOPPED = "stopped"


class PlaybackHandle:
    """A live playback. Stoppable once; later stops are no-ops."""

    def __init__(self, channel, buffer: PlayableBuffer, poll_interval: float):
        self.buffer = buffer
        self._channel = channel
        self._ended = asyncio.get_running_loop().create_future()
        self._on_complete: List[Callable[["PlaybackHandle"], None]] = []
        self._watcher = asyncio.create_task(self._watch(poll_interval))

    @property
    def active(self) -> bool:
        return not self._ended.done()

    @property
    def outcome(self) -> Optional[PlaybackOutcome]:
        return self._ended.result() if self._ended.done() else None

    def on_complete(self, callback: Callable[["PlaybackHandle"], None]):
        """Register ``callback`` for natural end of playback (not for ``stop``)."""
        self._on_complete.append(callback)

    async def wait(self) -> PlaybackOutcome:
        return await asyncio.shield(self._ended)

    def stop(self):
        if self._ended.done():
            return
        self._channel.stop()
        self._finish(PlaybackOutcome.STOPPED)
        if self._watcher is not asyncio.current_task():
            self._watcher.cancel()

    async def _watch(self, poll_interval: float):
        while not self._ended.done():
            if not self._channel.get_busy():
                logger.info(f"Narration finished after {self.buffer.duration:.1f}s of audio")
                self._finish(PlaybackOutcome.COMPLETED)
                return
            await asyncio.sleep(poll_interval)

    def _finish(self, outcome: PlaybackOutcome):
        self._ended.set_result(outcome)
        if outcome is PlaybackOutcome.COMPLETED:
            for callback in self._on_complete:
                callback(self)


class _PygameChannel:
    # Holds the Sound so it is not collected mid-playback
    def __init__(self, channel, sound):
        self._channel = channel
        self._sound = sound

    def get_busy(self) -> bool:
        return bool(self._channel.get_busy())

    def stop(self):
        self._channel.stop()


class PygameOutput:
    """Plays PCM through pygame.mixer, (re)initialising it to the buffer's format."""

    def _mixer(self, buffer: PlayableBuffer):
        import pygame

        wanted = (buffer.sample_rate, -16, buffer.channels)
        current = pygame.mixer.get_init()
        if current and current != wanted:
            pygame.mixer.quit()
            current = None
        if not current:
            pygame.mixer.init(frequency=buffer.sample_rate, size=-16, channels=buffer.channels, buffer=1024)
            logger.info(f"pygame.mixer initialized at {buffer.sample_rate} Hz, {buffer.channels} channel(s)")

    def start(self, buffer: PlayableBuffer):
        try:
            import pygame
        except ImportError as e:
            raise PlaybackError(f"pygame is not available: {e}") from e
        try:
            self._mixer(buffer)
            sound = pygame.mixer.Sound(buffer=buffer.frames)
            channel = sound.play()
        except pygame.error as e:
            logger.error(f"Audio output failed to start playback: {e}")
            raise PlaybackError(str(e)) from e
        if channel is None:
            raise PlaybackError("no free audio channel")
        return _PygameChannel(channel, sound)


class AudioPlayer:
    def __init__(self, output=None, poll_interval: float = PLAYBACK_POLL_INTERVAL_MS / 1000.0,
                 audio_format: Optional[str] = NARRATION_OUTPUT_FORMAT):
        self._output = output if output is not None else PygameOutput()
        self._poll_interval = poll_interval
        self._audio_format = audio_format

    async def decode_audio_data(self, data: bytes) -> PlayableBuffer:
        return await asyncio.to_thread(decode, data, self._audio_format)

    async def play(self, buffer: PlayableBuffer) -> PlaybackHandle:
        logger.info(f"Starting narration playback ({buffer.duration:.1f}s)")
        channel = self._output.start(buffer)
        return PlaybackHandle(channel, buffer, self._poll_interval)

    def stop(self, handle: Optional[PlaybackHandle]):
        if handle is not None:
            handle.stop()
