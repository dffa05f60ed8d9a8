"""
Tests for the OpenAI and ElevenLabs adapters with the remote side stubbed out
"""
import asyncio
import json
from types import SimpleNamespace

import httpx
import pytest

from conftest import FOREST_STORY, pcm_payload, png_bytes
from story_echoes import elevenlabs_client, llm
from story_echoes.errors import AnalysisFailure, ChatFailure, SynthesisFailure
from story_echoes.models import ConversationTurn, Speaker


class FakeCompletions:
    def __init__(self, content=None, error=None):
        self.content = content
        self.error = error
        self.calls = []

    async def create(self, **kwargs):
        self.calls.append(kwargs)
        if self.error:
            raise self.error
        message = SimpleNamespace(content=self.content)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])


@pytest.fixture
def openai_stub(monkeypatch):
    def install(content=None, error=None):
        completions = FakeCompletions(content, error)
        client = SimpleNamespace(chat=SimpleNamespace(completions=completions))
        monkeypatch.setattr(llm, "_client", client)
        return completions
    return install


# ---------- image analysis ----------

def test_analyze_image_parses_story(openai_stub):
    completions = openai_stub(json.dumps({
        "openingParagraph": FOREST_STORY.opening_paragraph,
        "mood": "misterioso",
        "setting": "bosque",
    }))
    story = asyncio.run(llm.analyze_image(png_bytes(), "image/png"))
    assert story == FOREST_STORY

    call = completions.calls[0]
    assert call["response_format"] == {"type": "json_object"}
    image_part = call["messages"][1]["content"][1]
    assert image_part["image_url"]["url"].startswith("data:image/png;base64,")


@pytest.mark.parametrize("content", [
    "no es json",
    json.dumps({"mood": "x", "setting": "y"}),
    json.dumps({"openingParagraph": "", "mood": "x", "setting": "y"}),
    None,
])
def test_malformed_story_is_an_analysis_failure(openai_stub, content):
    openai_stub(content)
    with pytest.raises(AnalysisFailure):
        asyncio.run(llm.analyze_image(png_bytes(), "image/png"))


def test_remote_error_is_an_analysis_failure(openai_stub):
    openai_stub(error=RuntimeError("503"))
    with pytest.raises(AnalysisFailure):
        asyncio.run(llm.analyze_image(png_bytes(), "image/png"))


# ---------- chat ----------

def test_chat_maps_history_and_story_into_messages(openai_stub):
    completions = openai_stub("Claro que sí.")
    prior = [
        ConversationTurn(speaker=Speaker.USER, text="hola"),
        ConversationTurn(speaker=Speaker.PERSONA, text="bienvenido"),
    ]
    reply = asyncio.run(llm.continue_chat(prior, "¿quién vive ahí?", story=FOREST_STORY))
    assert reply == "Claro que sí."

    messages = completions.calls[0]["messages"]
    assert [m["role"] for m in messages] == ["system", "user", "assistant", "user"]
    assert FOREST_STORY.opening_paragraph in messages[0]["content"]
    assert messages[-1]["content"] == "¿quién vive ahí?"


def test_chat_without_story_uses_plain_persona():
    messages = llm.build_chat_messages([], "hola")
    assert "La historia que escribiste" not in messages[0]["content"]


def test_chat_error_is_a_chat_failure(openai_stub):
    openai_stub(error=RuntimeError("timeout"))
    with pytest.raises(ChatFailure):
        asyncio.run(llm.continue_chat([], "hola"))


# ---------- speech ----------

@pytest.fixture
def elevenlabs_env(monkeypatch):
    monkeypatch.setenv("ELEVENLABS_API_KEY", "test-key")
    monkeypatch.setenv("ELEVENLABS_VOICE_ID", "voice-123")


def test_speech_returns_base64_payload(elevenlabs_env):
    seen = []
    payload = pcm_payload()

    def handler(request: httpx.Request):
        seen.append(request)
        return httpx.Response(200, json={"audio_base64": payload, "alignment": None})

    audio = asyncio.run(elevenlabs_client.synthesize_speech(
        "En la niebla...", transport=httpx.MockTransport(handler)))
    assert audio == payload

    request = seen[0]
    assert request.url.path == "/v1/text-to-speech/voice-123/with-timestamps"
    assert request.url.params["output_format"] == "pcm_24000"
    assert request.headers["xi-api-key"] == "test-key"
    assert json.loads(request.content)["text"] == "En la niebla..."


def test_missing_audio_payload_is_a_synthesis_failure(elevenlabs_env):
    transport = httpx.MockTransport(lambda request: httpx.Response(200, json={"alignment": None}))
    with pytest.raises(SynthesisFailure):
        asyncio.run(elevenlabs_client.synthesize_speech("hola", transport=transport))


def test_http_error_is_a_synthesis_failure(elevenlabs_env):
    transport = httpx.MockTransport(lambda request: httpx.Response(500, text="oops"))
    with pytest.raises(SynthesisFailure):
        asyncio.run(elevenlabs_client.synthesize_speech("hola", transport=transport))


def test_rate_limit_is_retried(elevenlabs_env, monkeypatch):
    async def no_sleep(_seconds):
        return None

    monkeypatch.setattr(elevenlabs_client.asyncio, "sleep", no_sleep)
    responses = [httpx.Response(429), httpx.Response(200, json={"audio_base64": "AAAA"})]
    transport = httpx.MockTransport(lambda request: responses.pop(0))
    assert asyncio.run(elevenlabs_client.synthesize_speech("hola", transport=transport)) == "AAAA"


def test_missing_credentials_is_a_synthesis_failure(monkeypatch):
    monkeypatch.delenv("ELEVENLABS_API_KEY", raising=False)
    monkeypatch.setenv("ELEVENLABS_VOICE_ID", "voice-123")
    with pytest.raises(SynthesisFailure):
        asyncio.run(elevenlabs_client.synthesize_speech("hola"))
