"""
Boundary to the external generation services.

Sessions only ever talk to a GenerationAdapter, so tests and alternative
providers can swap the whole remote side at once.
"""
from typing import Optional, Sequence
from . import llm, elevenlabs_client
from .models import ConversationTurn, StoryRecord


class GenerationAdapter:
    async def analyze_image(self, image_bytes: bytes, mime_type: str) -> StoryRecord:
        return await llm.analyze_image(image_bytes, mime_type)

    async def synthesize_speech(self, text: str) -> str:
        return await elevenlabs_client.synthesize_speech(text)

    async def continue_chat(self, prior_turns: Sequence[ConversationTurn], new_message: str,
                            story: Optional[StoryRecord] = None) -> str:
        return await llm.continue_chat(prior_turns, new_message, story=story)
