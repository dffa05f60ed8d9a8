import os, httpx, asyncio, logging
from .errors import SynthesisFailure
from .settings import ELEVENLABS_MODEL_ID, NARRATION_OUTPUT_FORMAT

logger = logging.getLogger(__name__)

def _voice_id() -> str:
    vid = os.getenv("ELEVENLABS_VOICE_ID", "")
    if not vid:
        raise RuntimeError("ELEVENLABS_VOICE_ID is not set; please configure your .env")
    return vid

def _headers():
    api_key = os.getenv("ELEVENLABS_API_KEY", "")
    if not api_key:
        raise RuntimeError("ELEVENLABS_API_KEY is not set; please configure your .env")
    return {
        "xi-api-key": api_key,
        "Content-Type": "application/json"
    }

def build_payload(text: str) -> dict:
    return {
        "text": text,
        "model_id": ELEVENLABS_MODEL_ID,
        # Lower stability gives a slower, more dramatic read
        "voice_settings": {"stability": 0.35, "similarity_boost": 0.75, "style": 0.4},
    }

async def synthesize_speech(text: str, max_retries: int = 3, transport: httpx.AsyncBaseTransport = None) -> str:
    """Return the narration of ``text`` as base64 audio in NARRATION_OUTPUT_FORMAT."""
    try:
        url = f"https://api.elevenlabs.io/v1/text-to-speech/{_voice_id()}/with-timestamps"
        headers = _headers()
    except RuntimeError as e:
        raise SynthesisFailure(str(e)) from e
    params = {"output_format": NARRATION_OUTPUT_FORMAT}
    payload = build_payload(text)

    for attempt in range(max_retries + 1):
        try:
            async with httpx.AsyncClient(timeout=60, transport=transport) as client:
                r = await client.post(url, headers=headers, params=params, json=payload)
                r.raise_for_status()
                body = r.json()
        except httpx.HTTPStatusError as e:
            if e.response.status_code == 429 and attempt < max_retries:
                # Exponential backoff: wait 2^attempt seconds
                wait_time = 2 ** attempt
                logger.warning(f"ElevenLabs rate limited (429). Retrying in {wait_time} seconds... (attempt {attempt + 1}/{max_retries + 1})")
                await asyncio.sleep(wait_time)
                continue
            logger.error(f"ElevenLabs request failed with status {e.response.status_code}")
            raise SynthesisFailure(f"speech request failed: {e.response.status_code}") from e
        except (httpx.HTTPError, ValueError) as e:
            # Network errors, timeouts and undecodable bodies are not retried
            logger.error(f"ElevenLabs request failed: {str(e)}")
            raise SynthesisFailure(str(e)) from e

        audio = body.get("audio_base64") if isinstance(body, dict) else None
        if not audio:
            logger.error("ElevenLabs response carried no audio payload")
            raise SynthesisFailure("No se pudo generar el audio.")
        logger.info(f"Received narration audio ({len(audio)} base64 chars)")
        return audio
