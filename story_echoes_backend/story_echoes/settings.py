import os
from dotenv import load_dotenv
import logging

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# Variables already set in the environment take precedence over story_echoes_backend/.env
_dotenv = os.path.join(os.path.dirname(__file__), "..", ".env")
if load_dotenv(_dotenv):
    logger.info(f"Settings read from {os.path.normpath(_dotenv)}")

OPENAI_API_KEY = os.getenv("OPENAI_API_KEY", "")
OPENAI_VISION_MODEL = os.getenv("OPENAI_VISION_MODEL", "gpt-4o-mini")
OPENAI_CHAT_MODEL = os.getenv("OPENAI_CHAT_MODEL", "gpt-4o-mini")

ELEVENLABS_API_KEY = os.getenv("ELEVENLABS_API_KEY", "")
ELEVENLABS_VOICE_ID = os.getenv("ELEVENLABS_VOICE_ID", "")
ELEVENLABS_MODEL_ID = os.getenv("ELEVENLABS_MODEL_ID", "eleven_multilingual_v2")

# ElevenLabs output_format. pcm_<rate> is headerless 16-bit PCM; mp3_*/opus_* are decoded with pydub
NARRATION_OUTPUT_FORMAT = os.getenv("NARRATION_OUTPUT_FORMAT", "pcm_24000")
NARRATION_CHANNELS = 1
PLAYBACK_POLL_INTERVAL_MS = int(os.getenv("PLAYBACK_POLL_INTERVAL_MS", "100"))

MAX_IMAGE_BYTES = int(os.getenv("MAX_IMAGE_BYTES", str(10 * 1024 * 1024)))
SESSION_IDLE_TIMEOUT_S = int(os.getenv("SESSION_IDLE_TIMEOUT_S", str(60 * 60)))

# e.g. "http://localhost:5173,http://127.0.0.1:5173"; empty means any origin
ALLOWED_ORIGINS = [o.strip() for o in os.getenv("ALLOWED_ORIGINS", "").split(",") if o.strip()] or ["*"]

_REQUIRED_KEYS = {
    "OPENAI_API_KEY": OPENAI_API_KEY,
    "ELEVENLABS_API_KEY": ELEVENLABS_API_KEY,
    "ELEVENLABS_VOICE_ID": ELEVENLABS_VOICE_ID,
}

def has_all_keys() -> bool:
    missing = [name for name, value in _REQUIRED_KEYS.items() if not value]
    if missing:
        logger.warning(f"Missing API keys: {', '.join(missing)}")
    return not missing
