"""
Live Session Configuration Module

Manages all configuration settings for a Live API session including:
- Connection settings (API key, model, endpoint, handshake timeout)
- Setup payload options (modalities, tools, system instruction, transcription)
- Generation parameters and voice selection
- Audio formats and playback buffering
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple
from enum import Enum

DEFAULT_WS_ENDPOINT = (
    "wss://generativelanguage.googleapis.com/ws/"
    "google.ai.generativelanguage.v1alpha.GenerativeService.BidiGenerateContent"
)
DEFAULT_MODEL = "models/gemini-2.5-flash-native-audio-preview-09-2025"


class ResponseModality(Enum):
    """Modalities the model may respond with."""
    AUDIO = "audio"
    TEXT = "text"

    @property
    def wire_name(self) -> str:
        return self.value.upper()


@dataclass(frozen=True)
class AudioConfig:
    """Audio format configuration for capture and playback."""
    # Capture settings (microphone -> server)
    capture_sample_rate: int = 16000  # Hz
    capture_bit_depth: int = 16  # signed integer, little-endian
    capture_channels: int = 1  # mono

    # Playback settings (server -> speaker)
    playback_sample_rate: int = 24000  # Hz
    playback_bit_depth: int = 16  # signed integer, little-endian
    playback_channels: int = 1  # mono

    # Chunk settings
    chunk_duration_ms: int = 40
    capture_chunk_bytes: int = field(init=False)

    # Playback buffering
    pre_buffer_chunks: int = 4  # 4 x 40ms = ~160ms startup latency
    feed_threshold_frames: int = 4800  # 200ms at 24kHz

    def __post_init__(self):
        if self.pre_buffer_chunks < 1:
            raise ValueError("pre_buffer_chunks must be at least 1")
        object.__setattr__(
            self,
            'capture_chunk_bytes',
            self.capture_sample_rate * self.chunk_duration_ms // 1000 * (self.capture_bit_depth // 8)
        )


@dataclass(frozen=True)
class PrebuiltVoiceConfig:
    voice_name: str

    def to_json(self) -> Dict[str, Any]:
        return {"voice_name": self.voice_name}


@dataclass(frozen=True)
class SpeechConfig:
    """Voice selection for audio responses."""
    voice: PrebuiltVoiceConfig

    @classmethod
    def with_voice(cls, voice_name: str) -> "SpeechConfig":
        return cls(voice=PrebuiltVoiceConfig(voice_name=voice_name))

    def to_json(self) -> Dict[str, Any]:
        return {"voice_config": {"prebuilt_voice_config": self.voice.to_json()}}


@dataclass(frozen=True)
class GenerationConfig:
    """Optional generation parameters; unset fields are omitted from the wire."""
    candidate_count: Optional[int] = None
    max_output_tokens: Optional[int] = None
    temperature: Optional[float] = None
    top_p: Optional[float] = None
    top_k: Optional[int] = None
    presence_penalty: Optional[float] = None
    frequency_penalty: Optional[float] = None
    speech_config: Optional[SpeechConfig] = None
    enable_affective_dialog: Optional[bool] = None

    def to_json(self) -> Dict[str, Any]:
        pairs = [
            ("candidateCount", self.candidate_count),
            ("maxOutputTokens", self.max_output_tokens),
            ("temperature", self.temperature),
            ("topP", self.top_p),
            ("topK", self.top_k),
            ("presencePenalty", self.presence_penalty),
            ("frequencyPenalty", self.frequency_penalty),
            ("enable_affective_dialog", self.enable_affective_dialog),
        ]
        payload = {key: value for key, value in pairs if value is not None}
        if self.speech_config is not None:
            payload["speech_config"] = self.speech_config.to_json()
        return payload


@dataclass(frozen=True)
class LiveConfig:
    """Configuration for a Live API session."""
    # Connection settings
    api_key: str
    model: str = DEFAULT_MODEL
    ws_endpoint: Optional[str] = None
    handshake_timeout_seconds: float = 10.0

    # Setup payload
    response_modalities: Tuple[ResponseModality, ...] = (ResponseModality.AUDIO,)
    tools: Optional[List[Dict[str, Any]]] = None  # function declarations
    system_instruction: Optional[str] = None
    generation_config: Optional[GenerationConfig] = None

    # Transcription
    input_audio_transcription: bool = False  # user speech -> text
    output_audio_transcription: bool = False  # model speech -> text

    @property
    def websocket_url(self) -> str:
        """Full WebSocket URL with the API key query parameter."""
        base = self.ws_endpoint or DEFAULT_WS_ENDPOINT
        return f"{base}?key={self.api_key}"

    def __repr__(self) -> str:
        # Keep the API key out of logs
        return (
            f"LiveConfig(model={self.model!r}, endpoint={self.ws_endpoint or 'default'}, "
            f"modalities={[m.value for m in self.response_modalities]}, "
            f"tools={len(self.tools or [])})"
        )


@dataclass(frozen=True)
class EngineConfig:
    """Complete engine configuration."""
    live: LiveConfig
    audio: AudioConfig = field(default_factory=AudioConfig)


default_audio_config = AudioConfig()


def load_config_from_env():
    """Load configuration from environment variables."""
    from .settings import load_config_from_env as _load
    return _load()


__all__ = [
    "DEFAULT_WS_ENDPOINT",
    "DEFAULT_MODEL",
    "ResponseModality",
    "AudioConfig",
    "PrebuiltVoiceConfig",
    "SpeechConfig",
    "GenerationConfig",
    "LiveConfig",
    "EngineConfig",
    "default_audio_config",
    "load_config_from_env",
]
