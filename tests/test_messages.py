"""
Unit tests for the Message Codec.

Each outgoing variant has exactly one wire envelope; the setup frame is
built from LiveConfig and carries only the configured sections.
"""

import base64
import json

import pytest

from livesession.config import GenerationConfig, LiveConfig, ResponseModality, SpeechConfig
from livesession.core.errors import FormatError
from livesession.core.messages import (
    AudioChunk,
    ConfigUpdate,
    EndOfTurn,
    Interrupt,
    OutgoingMessage,
    TextTurn,
    ToolResult,
    encode,
    encode_setup,
    message_kind,
    setup_payload,
    to_json,
)


# ── Envelopes ──

def test_text_turn_envelope():
    envelope = json.loads(encode(TextTurn(text="hi", turn_complete=True)))
    assert envelope == {
        "clientContent": {
            "turns": [{"role": "user", "parts": [{"text": "hi"}]}],
            "turnComplete": True,
        }
    }
    assert envelope["clientContent"]["turns"][0]["parts"][0]["text"] == "hi"


def test_text_turn_incomplete():
    envelope = to_json(TextTurn(text="partial", turn_complete=False))
    assert envelope["clientContent"]["turnComplete"] is False


def test_text_turn_without_turn_complete_omits_key():
    envelope = to_json(TextTurn(text="x", turn_complete=None))
    assert "turnComplete" not in envelope["clientContent"]


def test_text_turn_rejects_non_string():
    with pytest.raises(FormatError):
        encode(TextTurn(text=42))


def test_audio_chunk_is_base64():
    pcm = bytes(range(256)) * 5
    envelope = to_json(AudioChunk(pcm=pcm))
    chunk = envelope["realtimeInput"]["mediaChunks"][0]
    assert chunk["mimeType"] == "audio/pcm"
    assert base64.b64decode(chunk["data"]) == pcm


def test_audio_chunk_requires_mime_type():
    with pytest.raises(FormatError):
        encode(AudioChunk(pcm=b"\x00\x00", mime_type=""))


def test_tool_result_envelope():
    envelope = to_json(ToolResult(call_id="call-1", response={"temperature": 21}))
    assert envelope == {
        "toolResponse": {
            "functionResponses": [{"id": "call-1", "response": {"temperature": 21}}],
        }
    }


def test_tool_result_error_helper():
    envelope = to_json(ToolResult.error("call-2", "not available"))
    assert envelope["toolResponse"]["functionResponses"][0]["response"] == {"error": "not available"}


def test_tool_result_empty_id_rejected():
    with pytest.raises(FormatError):
        encode(ToolResult(call_id="", response={}))


def test_config_update_uppercases_modalities():
    envelope = to_json(ConfigUpdate(modalities=(ResponseModality.TEXT,)))
    assert envelope == {"clientContent": {"generationConfig": {"response_modalities": ["TEXT"]}}}


def test_config_update_merges_generation_params():
    envelope = to_json(ConfigUpdate(
        modalities=(ResponseModality.AUDIO, ResponseModality.TEXT),
        generation_params={"temperature": 0.2},
    ))
    config = envelope["clientContent"]["generationConfig"]
    assert config["response_modalities"] == ["AUDIO", "TEXT"]
    assert config["temperature"] == 0.2


def test_end_of_turn_envelope():
    assert to_json(EndOfTurn()) == {"clientContent": {"turnComplete": True}}


def test_interrupt_envelope():
    assert to_json(Interrupt()) == {"clientContent": {"interrupt": True}}


def test_unsupported_message_rejected():
    class Custom(OutgoingMessage):
        pass

    with pytest.raises(FormatError):
        encode(Custom())


def test_encode_is_compact():
    assert encode(EndOfTurn()) == '{"clientContent":{"turnComplete":true}}'


def test_message_kind():
    assert message_kind(TextTurn(text="a")) == "TextTurn"
    assert message_kind(AudioChunk(pcm=b"")) == "AudioChunk"


# ── Setup ──

def test_setup_minimal():
    config = LiveConfig(api_key="k", model="models/test")
    assert setup_payload(config) == {
        "setup": {
            "model": "models/test",
            "generationConfig": {"response_modalities": ["AUDIO"]},
        }
    }


def test_setup_with_all_options():
    tools = [{"name": "get_weather", "parameters": {"type": "object"}}]
    config = LiveConfig(
        api_key="k",
        model="models/test",
        response_modalities=(ResponseModality.TEXT,),
        tools=tools,
        system_instruction="Be brief.",
        generation_config=GenerationConfig(
            temperature=0.5,
            speech_config=SpeechConfig.with_voice("Puck"),
        ),
        input_audio_transcription=True,
        output_audio_transcription=True,
    )
    setup = json.loads(encode_setup(config))["setup"]

    assert setup["model"] == "models/test"
    assert setup["systemInstruction"] == {"parts": [{"text": "Be brief."}]}
    assert setup["tools"] == [{"functionDeclarations": tools}]
    assert setup["input_audio_transcription"] == {}
    assert setup["output_audio_transcription"] == {}

    generation = setup["generationConfig"]
    assert generation["response_modalities"] == ["TEXT"]
    assert generation["temperature"] == 0.5
    assert generation["speech_config"] == {
        "voice_config": {"prebuilt_voice_config": {"voice_name": "Puck"}}
    }


def test_setup_omits_unset_sections():
    setup = setup_payload(LiveConfig(api_key="k"))["setup"]
    for key in ("systemInstruction", "tools", "input_audio_transcription", "output_audio_transcription"):
        assert key not in setup


def test_setup_requires_model():
    with pytest.raises(FormatError):
        setup_payload(LiveConfig(api_key="k", model=""))


def test_websocket_url_carries_key():
    config = LiveConfig(api_key="secret", ws_endpoint="wss://example.test/live")
    assert config.websocket_url == "wss://example.test/live?key=secret"
    assert "secret" not in repr(config)
