import os, json, logging
from typing import Optional, Sequence
from pydantic import ValidationError
from .errors import AnalysisFailure, ChatFailure
from .media import to_data_url
from .models import ConversationTurn, RawImage, Speaker, StoryRecord
from .prompts import (
    ANALYSIS_SYSTEM_PROMPT, ANALYSIS_USER_PROMPT_TEMPLATE, STORY_SCHEMA,
    AUTHOR_SYSTEM_PROMPT, AUTHOR_STORY_CONTEXT_TEMPLATE,
)
from .settings import OPENAI_VISION_MODEL, OPENAI_CHAT_MODEL

logger = logging.getLogger(__name__)

_client = None

def _get_client():
    global _client
    if _client is None:
        from openai import AsyncOpenAI
        api_key = os.getenv("OPENAI_API_KEY", "")
        if not api_key:
            raise RuntimeError("OPENAI_API_KEY is not set; please configure your .env")
        _client = AsyncOpenAI(api_key=api_key)
    return _client

def build_analysis_messages(image: RawImage) -> list:
    return [
        {"role": "system", "content": ANALYSIS_SYSTEM_PROMPT},
        {
            "role": "user",
            "content": [
                {"type": "text", "text": ANALYSIS_USER_PROMPT_TEMPLATE.format(schema=STORY_SCHEMA)},
                {"type": "image_url", "image_url": {"url": to_data_url(image)}},
            ],
        },
    ]

def parse_story(content: Optional[str]) -> StoryRecord:
    try:
        return StoryRecord.model_validate(json.loads(content or ""))
    except (json.JSONDecodeError, ValidationError) as e:
        logger.error(f"Model returned content that is not a story record: {str(e)}")
        raise AnalysisFailure("malformed story response") from e

async def analyze_image(image_bytes: bytes, mime_type: str) -> StoryRecord:
    logger.info(f"Calling OpenAI API to analyze a {mime_type} image ({len(image_bytes)} bytes)")
    messages = build_analysis_messages(RawImage(data=image_bytes, mime_type=mime_type))
    try:
        client = _get_client()
        resp = await client.chat.completions.create(
            model=OPENAI_VISION_MODEL,
            messages=messages,
            temperature=0.9,
            response_format={"type": "json_object"},
        )
        content = resp.choices[0].message.content
    except Exception as e:
        logger.error(f"OpenAI image analysis failed: {str(e)}")
        raise AnalysisFailure(str(e)) from e
    story = parse_story(content)
    logger.info(f"Received story opening (mood={story.mood!r}, setting={story.setting!r})")
    return story

def build_author_instruction(story: Optional[StoryRecord] = None) -> str:
    if story is None:
        return AUTHOR_SYSTEM_PROMPT
    return AUTHOR_SYSTEM_PROMPT + AUTHOR_STORY_CONTEXT_TEMPLATE.format(
        opening_paragraph=story.opening_paragraph,
        mood=story.mood,
        setting=story.setting,
    )

def build_chat_messages(prior_turns: Sequence[ConversationTurn], new_message: str,
                        story: Optional[StoryRecord] = None) -> list:
    messages = [{"role": "system", "content": build_author_instruction(story)}]
    for turn in prior_turns:
        role = "user" if turn.speaker == Speaker.USER else "assistant"
        messages.append({"role": role, "content": turn.text})
    messages.append({"role": "user", "content": new_message})
    return messages

async def continue_chat(prior_turns: Sequence[ConversationTurn], new_message: str,
                        story: Optional[StoryRecord] = None) -> str:
    logger.info(f"Calling OpenAI API for author reply ({len(prior_turns)} prior turns)")
    try:
        client = _get_client()
        resp = await client.chat.completions.create(
            model=OPENAI_CHAT_MODEL,
            messages=build_chat_messages(prior_turns, new_message, story),
            temperature=0.8,
        )
        return resp.choices[0].message.content or ""
    except Exception as e:
        logger.error(f"OpenAI chat call failed: {str(e)}")
        raise ChatFailure(str(e)) from e
