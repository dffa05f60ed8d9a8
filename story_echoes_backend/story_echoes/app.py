from fastapi import Depends, FastAPI, File, HTTPException, UploadFile
from fastapi.responses import Response
from fastapi.middleware.cors import CORSMiddleware
import logging
import time
import uuid
from typing import Callable, Dict, Optional

# Ensure .env is loaded before importing modules that initialize API clients
from .settings import has_all_keys, ALLOWED_ORIGINS, MAX_IMAGE_BYTES, SESSION_IDLE_TIMEOUT_S
from .audio import AudioPlayer
from .conversation import ConversationSession
from .errors import ConversationBusyError, EmptyMessageError, InvalidImageError, InvalidStateError
from .generation import GenerationAdapter
from .models import ChatMessageRequest, ChatSnapshot, SessionCreated, StorySnapshot
from .story_session import StorySession

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app = FastAPI(title="Story Echoes Backend")

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS or ["*"],
    allow_credentials=True,
    allow_methods=["POST", "GET", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)


class ClientSession:
    """Everything one browser tab owns: the story panel and, while open, the chat panel."""

    def __init__(self, session_id: str, adapter: GenerationAdapter, player_factory: Callable[[], AudioPlayer]):
        self.session_id = session_id
        self._adapter = adapter
        self.story = StorySession(adapter, player_factory=player_factory)
        self.chat: Optional[ConversationSession] = None

    def open_chat(self) -> ConversationSession:
        if self.chat is None:
            self.chat = ConversationSession(self._adapter, story_provider=lambda: self.story.story)
        return self.chat

    def close_chat(self):
        self.chat = None

    def close(self):
        self.story.close()
        self.chat = None


class SessionStore:
    def __init__(self, adapter: Optional[GenerationAdapter] = None,
                 player_factory: Callable[[], AudioPlayer] = AudioPlayer,
                 idle_timeout: float = SESSION_IDLE_TIMEOUT_S,
                 clock: Callable[[], float] = time.monotonic):
        self._adapter = adapter or GenerationAdapter()
        self._player_factory = player_factory
        self._idle_timeout = idle_timeout
        self._clock = clock
        self._sessions: Dict[str, ClientSession] = {}
        self._last_seen: Dict[str, float] = {}

    def create(self) -> ClientSession:
        self.evict_idle()
        session = ClientSession(str(uuid.uuid4()), self._adapter, self._player_factory)
        self._sessions[session.session_id] = session
        self._last_seen[session.session_id] = self._clock()
        logger.info(f"Created session {session.session_id}")
        return session

    def get(self, session_id: str) -> Optional[ClientSession]:
        self.evict_idle()
        session = self._sessions.get(session_id)
        if session is not None:
            self._last_seen[session_id] = self._clock()
        return session

    def discard(self, session_id: str) -> bool:
        session = self._sessions.pop(session_id, None)
        self._last_seen.pop(session_id, None)
        if session is None:
            return False
        session.close()
        logger.info(f"Discarded session {session_id}")
        return True

    def evict_idle(self) -> int:
        """Close sessions nobody has touched for ``idle_timeout`` seconds."""
        cutoff = self._clock() - self._idle_timeout
        stale = [sid for sid, seen in self._last_seen.items() if seen < cutoff]
        for sid in stale:
            logger.info(f"Session {sid} idle for over {self._idle_timeout:.0f}s, evicting")
            self.discard(sid)
        return len(stale)


STORE = SessionStore()

def get_store() -> SessionStore:
    return STORE

def _session(session_id: str, store: SessionStore) -> ClientSession:
    session = store.get(session_id)
    if not session:
        raise HTTPException(404, "session not found")
    return session

def _open_chat(session: ClientSession) -> ConversationSession:
    if session.chat is None:
        raise HTTPException(409, "chat panel is closed")
    return session.chat


@app.get("/health")
def health():
    keys_ok = has_all_keys()
    logger.info(f"Health check: API keys present = {keys_ok}")
    return {"ok": True, "has_keys": keys_ok}

@app.post("/v1/sessions", response_model=SessionCreated)
async def create_session(store: SessionStore = Depends(get_store)):
    session = store.create()
    return SessionCreated(session_id=session.session_id, story=session.story.snapshot())

@app.get("/v1/sessions/{session_id}", response_model=StorySnapshot)
async def get_session(session_id: str, store: SessionStore = Depends(get_store)):
    return _session(session_id, store).story.snapshot()

@app.delete("/v1/sessions/{session_id}", status_code=204)
async def delete_session(session_id: str, store: SessionStore = Depends(get_store)):
    if not store.discard(session_id):
        raise HTTPException(404, "session not found")
    return Response(status_code=204)

# --- story panel ---

@app.post("/v1/sessions/{session_id}/image", response_model=StorySnapshot)
async def upload_image(session_id: str, file: UploadFile = File(...), store: SessionStore = Depends(get_store)):
    session = _session(session_id, store)
    data = await file.read()
    if len(data) > MAX_IMAGE_BYTES:
        raise HTTPException(413, f"image larger than {MAX_IMAGE_BYTES} bytes")
    logger.info(f"Session {session_id}: received {file.filename or 'upload'} ({len(data)} bytes)")
    try:
        await session.story.upload_image(data, file.content_type)
    except InvalidImageError as e:
        raise HTTPException(400, str(e))
    return session.story.snapshot()

@app.get("/v1/sessions/{session_id}/image")
async def image_preview(session_id: str, store: SessionStore = Depends(get_store)):
    image = _session(session_id, store).story.image
    if image is None:
        raise HTTPException(404, "no image uploaded")
    return Response(content=image.data, media_type=image.mime_type)

@app.delete("/v1/sessions/{session_id}/image", response_model=StorySnapshot)
async def clear_image(session_id: str, store: SessionStore = Depends(get_store)):
    session = _session(session_id, store)
    session.story.clear_image()
    return session.story.snapshot()

@app.post("/v1/sessions/{session_id}/story:retry", response_model=StorySnapshot)
async def retry_story(session_id: str, store: SessionStore = Depends(get_store)):
    session = _session(session_id, store)
    try:
        await session.story.retry()
    except InvalidStateError as e:
        raise HTTPException(409, str(e))
    return session.story.snapshot()

@app.post("/v1/sessions/{session_id}/story:regenerate", response_model=StorySnapshot)
async def regenerate_story(session_id: str, store: SessionStore = Depends(get_store)):
    session = _session(session_id, store)
    try:
        await session.story.regenerate()
    except InvalidStateError as e:
        raise HTTPException(409, str(e))
    return session.story.snapshot()

@app.post("/v1/sessions/{session_id}/narration", response_model=StorySnapshot)
async def toggle_narration(session_id: str, store: SessionStore = Depends(get_store)):
    session = _session(session_id, store)
    try:
        await session.story.toggle_narration()
    except InvalidStateError as e:
        raise HTTPException(409, str(e))
    return session.story.snapshot()

@app.delete("/v1/sessions/{session_id}/narration", response_model=StorySnapshot)
async def stop_narration(session_id: str, store: SessionStore = Depends(get_store)):
    session = _session(session_id, store)
    session.story.stop_narration()
    return session.story.snapshot()

# --- chat panel ---

@app.post("/v1/sessions/{session_id}/chat", response_model=ChatSnapshot)
async def open_chat(session_id: str, store: SessionStore = Depends(get_store)):
    return _session(session_id, store).open_chat().snapshot()

@app.get("/v1/sessions/{session_id}/chat", response_model=ChatSnapshot)
async def get_chat(session_id: str, store: SessionStore = Depends(get_store)):
    return _open_chat(_session(session_id, store)).snapshot()

@app.post("/v1/sessions/{session_id}/chat/messages", response_model=ChatSnapshot)
async def send_chat_message(session_id: str, req: ChatMessageRequest, store: SessionStore = Depends(get_store)):
    chat = _open_chat(_session(session_id, store))
    try:
        await chat.send(req.message)
    except EmptyMessageError as e:
        raise HTTPException(400, str(e))
    except ConversationBusyError as e:
        raise HTTPException(409, str(e))
    return chat.snapshot()

@app.delete("/v1/sessions/{session_id}/chat", status_code=204)
async def close_chat(session_id: str, store: SessionStore = Depends(get_store)):
    _session(session_id, store).close_chat()
    return Response(status_code=204)
