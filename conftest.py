"""
Shared fakes for the test suite: a scripted generation adapter and an in-memory audio output.
"""
import asyncio
import base64
import io
import struct
import wave

import pytest
from PIL import Image

from story_echoes.audio import AudioPlayer
from story_echoes.models import StoryRecord

FOREST_STORY = StoryRecord(
    opening_paragraph="En la niebla, el bosque respiraba como un animal dormido.",
    mood="misterioso",
    setting="bosque",
)
HARBOUR_STORY = StoryRecord(
    opening_paragraph="El puerto olía a sal y a promesas rotas.",
    mood="melancólico",
    setting="puerto",
)


def pcm_bytes(frames: int = 240) -> bytes:
    # A short ramp of signed 16-bit mono samples
    return b"".join(struct.pack("<h", (i * 64) % 32767) for i in range(frames))


def pcm_payload(frames: int = 240) -> str:
    return base64.b64encode(pcm_bytes(frames)).decode("ascii")


def wav_bytes(frames: bytes, rate=16000, channels=1, width=2) -> bytes:
    buf = io.BytesIO()
    with wave.open(buf, "wb") as wav:
        wav.setnchannels(channels)
        wav.setsampwidth(width)
        wav.setframerate(rate)
        wav.writeframes(frames)
    return buf.getvalue()


def broken_wav_bytes(rate=None, channels=None) -> bytes:
    """A 16-bit mono WAV whose header claims the given rate/channel count."""
    data = bytearray(wav_bytes(pcm_bytes(32)))
    if channels is not None:
        data[22:24] = struct.pack("<H", channels)
    if rate is not None:
        data[24:28] = struct.pack("<I", rate)
    return bytes(data)


def png_bytes(color=(40, 80, 120)) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", (8, 8), color).save(buf, format="PNG")
    return buf.getvalue()


class FakeAdapter:
    """
    Scripted stand-in for GenerationAdapter.

    ``stories``/``replies`` are consumed in call order (the last entry repeats); an
    exception instance in either list is raised instead of returned. ``gates`` maps a
    zero-based analysis call index to an asyncio.Event the call waits on.
    """

    def __init__(self, stories=None, speech=None, replies=None):
        self.stories = list(stories or [FOREST_STORY])
        self.speech = speech if speech is not None else pcm_payload()
        self.replies = list(replies or ["Los árboles recuerdan a quien los nombra."])
        self.gates = {}
        self.speech_gate = None
        self.analyze_calls = []
        self.speech_calls = []
        self.chat_calls = []

    @staticmethod
    def _pick(items, index):
        item = items[min(index, len(items) - 1)]
        if isinstance(item, Exception):
            raise item
        return item

    async def analyze_image(self, image_bytes, mime_type):
        index = len(self.analyze_calls)
        self.analyze_calls.append((image_bytes, mime_type))
        gate = self.gates.get(index)
        if gate is not None:
            await gate.wait()
        return self._pick(self.stories, index)

    async def synthesize_speech(self, text):
        self.speech_calls.append(text)
        if self.speech_gate is not None:
            await self.speech_gate.wait()
        if isinstance(self.speech, Exception):
            raise self.speech
        return self.speech

    async def continue_chat(self, prior_turns, new_message, story=None):
        index = len(self.chat_calls)
        self.chat_calls.append((tuple(prior_turns), new_message, story))
        return self._pick(self.replies, index)


class FakeChannel:
    def __init__(self, buffer):
        self.buffer = buffer
        self.busy = True
        self.stop_calls = 0

    def get_busy(self):
        return self.busy

    def stop(self):
        self.stop_calls += 1
        self.busy = False

    def finish(self):
        self.busy = False


class FakeOutput:
    def __init__(self):
        self.channels = []

    def start(self, buffer):
        channel = FakeChannel(buffer)
        self.channels.append(channel)
        return channel

    @property
    def busy_channels(self):
        return [c for c in self.channels if c.busy]


async def settle(rounds: int = 5, delay: float = 0.01):
    """Give watcher tasks a few loop iterations to notice channel changes."""
    for _ in range(rounds):
        await asyncio.sleep(delay)


@pytest.fixture
def adapter():
    return FakeAdapter()


@pytest.fixture
def output():
    return FakeOutput()


@pytest.fixture
def player_factory(output):
    created = []

    def factory():
        player = AudioPlayer(output=output, poll_interval=0.001)
        created.append(player)
        return player

    factory.created = created
    return factory


