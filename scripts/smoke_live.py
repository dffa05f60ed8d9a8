#!/usr/bin/env python3
"""
Smoke test against the real services: analyze an image, narrate it, ask the author one question.

Usage: python scripts/smoke_live.py path/to/image.jpg [--play]
"""
import asyncio
import os
import sys

# Add the backend to the path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'story_echoes_backend'))

from story_echoes.audio import decode, decode_base64_audio
from story_echoes.conversation import ConversationSession
from story_echoes.generation import GenerationAdapter
from story_echoes.settings import NARRATION_OUTPUT_FORMAT, has_all_keys
from story_echoes.story_session import StorySession


async def smoke(image_path: str, play: bool) -> bool:
    if not has_all_keys():
        print("❌ API keys not configured. Please check your .env file.")
        return False

    adapter = GenerationAdapter()
    with open(image_path, "rb") as f:
        data = f.read()

    print(f"📸 Analyzing {image_path} ({len(data)} bytes)...")
    session = StorySession(adapter)
    await session.upload_image(data)
    if session.story is None:
        print(f"❌ Analysis failed: {session.error}")
        return False
    print(f"✅ Mood: {session.story.mood} | Setting: {session.story.setting}")
    print(f"📖 {session.story.opening_paragraph}")

    print("\n🗣️ Synthesizing narration...")
    if play:
        await session.toggle_narration()
        if not session.playback.playing:
            print(f"❌ Narration failed: {session.narration_error}")
            return False
        await session.active_handle.wait()
        print("✅ Narration played to the end")
    else:
        payload = await adapter.synthesize_speech(session.story.opening_paragraph)
        buffer = decode(decode_base64_audio(payload), NARRATION_OUTPUT_FORMAT)
        print(f"✅ Got {buffer.duration:.1f}s of audio at {buffer.sample_rate} Hz")

    print("\n💬 Asking the author...")
    chat = ConversationSession(adapter, story_provider=lambda: session.story)
    reply = await chat.send("¿Quién es el protagonista de esta historia?")
    print(f"✅ {reply.text}")
    return True


if __name__ == "__main__":
    if len(sys.argv) < 2:
        print(__doc__)
        sys.exit(2)
    success = asyncio.run(smoke(sys.argv[1], "--play" in sys.argv[2:]))
    if success:
        print("\n🎉 SUCCESS! All services working")
    else:
        print("\n💥 SMOKE TEST FAILED")
    sys.exit(0 if success else 1)
