from enum import Enum
from pydantic import BaseModel, ConfigDict, Field
from typing import List, Optional


class StoryRecord(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    opening_paragraph: str = Field(alias="openingParagraph", min_length=1)
    mood: str
    setting: str


class Speaker(str, Enum):
    USER = "user"
    PERSONA = "persona"


class ConversationTurn(BaseModel):
    model_config = ConfigDict(frozen=True)

    speaker: Speaker
    text: str


class StoryStatus(str, Enum):
    EMPTY = "empty"
    LOADING = "loading"
    READY = "ready"
    ERROR = "error"


class PlaybackState(BaseModel):
    model_config = ConfigDict(frozen=True)

    playing: bool = False
    buffering: bool = False


IDLE = PlaybackState()
BUFFERING = PlaybackState(buffering=True)
PLAYING = PlaybackState(playing=True)


class RawImage(BaseModel):
    model_config = ConfigDict(frozen=True)

    data: bytes
    mime_type: str


class StorySnapshot(BaseModel):
    status: StoryStatus
    story: Optional[StoryRecord] = None
    error: Optional[str] = None
    playback: PlaybackState = IDLE
    narration_error: Optional[str] = None
    has_image: bool = False
    mime_type: Optional[str] = None


class ChatSnapshot(BaseModel):
    turns: List[ConversationTurn] = Field(default_factory=list)
    typing: bool = False


class ChatMessageRequest(BaseModel):
    message: str


class SessionCreated(BaseModel):
    session_id: str
    story: StorySnapshot
