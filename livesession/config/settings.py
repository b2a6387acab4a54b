"""
Environment-based configuration loader.

Loads configuration from environment variables with defaults from config module.
"""

import os
from typing import Optional, Tuple

from . import (
    DEFAULT_MODEL,
    AudioConfig,
    EngineConfig,
    GenerationConfig,
    LiveConfig,
    ResponseModality,
    SpeechConfig,
)

_TRUTHY = {"1", "true", "yes", "on"}


def _env_flag(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in _TRUTHY


def _parse_modalities(raw: str) -> Tuple[ResponseModality, ...]:
    modalities = []
    for token in raw.split(","):
        token = token.strip().lower()
        if not token:
            continue
        try:
            modalities.append(ResponseModality(token))
        except ValueError:
            raise ValueError(f"Unknown response modality in LIVE_RESPONSE_MODALITIES: {token!r}")
    return tuple(modalities)


def load_config_from_env(api_key: Optional[str] = None) -> EngineConfig:
    """
    Load engine configuration from environment variables.

    Environment variables:
        GEMINI_API_KEY                  - API key (required unless passed in)
        LIVE_MODEL                      - Model name (default: DEFAULT_MODEL)
        LIVE_WS_ENDPOINT                - WebSocket endpoint override
        LIVE_SYSTEM_INSTRUCTION         - System instruction text
        LIVE_RESPONSE_MODALITIES        - Comma-separated: audio,text (default: audio)
        LIVE_VOICE                      - Prebuilt voice name
        LIVE_HANDSHAKE_TIMEOUT_S        - Handshake timeout (default: 10)
        LIVE_INPUT_TRANSCRIPTION        - Enable user speech transcription (default: 0)
        LIVE_OUTPUT_TRANSCRIPTION       - Enable model speech transcription (default: 0)
        PLAYBACK_PRE_BUFFER_CHUNKS      - Chunks buffered before playback (default: 4)
        PLAYBACK_FEED_THRESHOLD_FRAMES  - Sink refill threshold (default: 4800)
    """
    key = api_key or os.getenv("GEMINI_API_KEY")
    if not key:
        raise ValueError("GEMINI_API_KEY is not set")

    # Generation configuration
    voice = os.getenv("LIVE_VOICE")
    generation = GenerationConfig(speech_config=SpeechConfig.with_voice(voice)) if voice else None

    # Live configuration
    live = LiveConfig(
        api_key=key,
        model=os.getenv("LIVE_MODEL", DEFAULT_MODEL),
        ws_endpoint=os.getenv("LIVE_WS_ENDPOINT") or None,
        handshake_timeout_seconds=float(os.getenv("LIVE_HANDSHAKE_TIMEOUT_S", 10.0)),
        response_modalities=_parse_modalities(os.getenv("LIVE_RESPONSE_MODALITIES", "audio")),
        system_instruction=os.getenv("LIVE_SYSTEM_INSTRUCTION") or None,
        generation_config=generation,
        input_audio_transcription=_env_flag("LIVE_INPUT_TRANSCRIPTION"),
        output_audio_transcription=_env_flag("LIVE_OUTPUT_TRANSCRIPTION"),
    )

    # Audio configuration
    audio = AudioConfig(
        pre_buffer_chunks=int(os.getenv("PLAYBACK_PRE_BUFFER_CHUNKS", 4)),
        feed_threshold_frames=int(os.getenv("PLAYBACK_FEED_THRESHOLD_FRAMES", 4800)),
    )

    return EngineConfig(live=live, audio=audio)
