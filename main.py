#!/usr/bin/env python3
"""
livesession - interactive Live API console

Connects using environment configuration (GEMINI_API_KEY and LIVE_*),
sends each typed line as a text turn and prints model text and
transcriptions. Model audio plays through the default speaker.

Usage:
    python main.py                     # Text in, audio + text out
    python main.py --mic               # Also stream the microphone
    python main.py --no-audio          # No speaker (text responses only)
    python main.py --metrics           # Prometheus metrics on :9464
    python main.py --debug             # Verbose human-readable logs

Console commands:
    /end        End the current user turn (after speaking)
    /interrupt  Stop the current model response
    /status     Print engine status
    /level      Print the microphone input level
    /quit       Disconnect and exit
"""

import argparse
import asyncio
import json
import logging
import os
import signal
import sys
from dataclasses import replace

from livesession.config import ResponseModality, SpeechConfig, GenerationConfig
from livesession.config.settings import load_config_from_env
from livesession.core.audio_io import SoundDeviceAudioSink, SoundDeviceMicrophone
from livesession.core.errors import LiveError
from livesession.core.events import Channel, Event, EventType
from livesession.debugging.logging_config import configure_logging
from livesession.infrastructure.live_client import LiveSessionEngine
from livesession.performance.metrics import get_metrics

logger = logging.getLogger("livesession.main")

COMMAND_QUIT = "/quit"
COMMAND_END = "/end"
COMMAND_INTERRUPT = "/interrupt"
COMMAND_STATUS = "/status"
COMMAND_LEVEL = "/level"
LEVEL_BAR_WIDTH = 30


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Gemini Live API console")
    parser.add_argument(
        "--no-audio",
        action="store_true",
        help="Disable the speaker and request text responses",
    )
    parser.add_argument(
        "--mic",
        action="store_true",
        help="Stream the default microphone into the session",
    )
    parser.add_argument(
        "--voice",
        type=str,
        default=None,
        help="Prebuilt voice name (overrides LIVE_VOICE)",
    )
    parser.add_argument(
        "--system-instruction",
        type=str,
        default=None,
        help="System instruction (overrides LIVE_SYSTEM_INSTRUCTION)",
    )
    parser.add_argument(
        "--transcribe",
        action="store_true",
        help="Request input and output audio transcriptions",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )
    parser.add_argument(
        "--metrics",
        action="store_true",
        help="Enable the Prometheus metrics server",
    )
    parser.add_argument(
        "--metrics-port",
        type=int,
        default=None,
        help="Metrics server port (default: LIVESESSION_METRICS_PORT or 9464)",
    )
    return parser.parse_args()


def build_engine_config(args: argparse.Namespace):
    """Environment configuration with command-line overrides applied."""
    engine_config = load_config_from_env()
    live = engine_config.live

    if args.no_audio:
        live = replace(live, response_modalities=(ResponseModality.TEXT,))
    if args.system_instruction:
        live = replace(live, system_instruction=args.system_instruction)
    if args.transcribe:
        live = replace(live, input_audio_transcription=True, output_audio_transcription=True)
    if args.voice:
        generation = live.generation_config or GenerationConfig()
        live = replace(live, generation_config=replace(generation, speech_config=SpeechConfig.with_voice(args.voice)))

    return replace(engine_config, live=live)


def print_content(event: Event):
    """Content channel subscriber: echo model output to the console."""
    if event.type is EventType.TEXT:
        print(f"model> {event.payload.text}", flush=True)
    elif event.type is EventType.INPUT_TRANSCRIPT:
        print(f"you (heard)> {event.payload.text}", flush=True)
    elif event.type is EventType.OUTPUT_TRANSCRIPT:
        print(f"model (said)> {event.payload.text}", flush=True)
    elif event.type is EventType.INTERRUPTED:
        print("[interrupted]", flush=True)


def print_diagnostic(event: Event):
    if event.type is EventType.ERROR:
        print(f"[error] {event.payload}", file=sys.stderr, flush=True)
    elif event.type is EventType.GO_AWAY:
        print(f"[server closing soon: {event.payload.time_left}]", file=sys.stderr, flush=True)


def format_level(level: float) -> str:
    filled = int(round(level * LEVEL_BAR_WIDTH))
    return f"mic [{'#' * filled}{' ' * (LEVEL_BAR_WIDTH - filled)}] {level:.3f}"


def watch_stdin(loop: asyncio.AbstractEventLoop, queue: asyncio.Queue):
    """Queue each stdin line as it becomes readable; EOF counts as /quit."""
    def on_readable():
        line = sys.stdin.readline()
        queue.put_nowait(line.strip() if line else COMMAND_QUIT)

    loop.add_reader(sys.stdin.fileno(), on_readable)


async def run_console(args: argparse.Namespace):
    """Connect, then relay console input until /quit or a signal."""
    engine_config = build_engine_config(args)

    if args.metrics:
        get_metrics().start_server(args.metrics_port)

    sink = None if args.no_audio else SoundDeviceAudioSink()
    engine = LiveSessionEngine.from_engine_config(engine_config, audio_sink=sink)
    engine.events.subscribe(Channel.CONTENT, print_content)
    engine.events.subscribe(Channel.DIAGNOSTIC, print_diagnostic)

    async def decline_tool_call(call):
        await engine.send_tool_error(call.id, f"Function {call.name} is not available")

    def on_tool_call(event: Event):
        print(f"[tool call] {event.payload.name}({json.dumps(event.payload.args)})", flush=True)
        asyncio.ensure_future(decline_tool_call(event.payload))

    engine.events.on(EventType.TOOL_CALL, on_tool_call)

    lines: asyncio.Queue = asyncio.Queue()
    stop = asyncio.Event()

    def on_disconnected(event: Event):
        print(f"[disconnected: {event.payload}]", flush=True)
        stop.set()

    engine.events.on(EventType.DISCONNECTED, on_disconnected)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    watch_stdin(loop, lines)
    relay = None
    mic = None

    try:
        await engine.connect()
        print(f"Connected ({engine_config.live.model}). Type a message, or /quit.", flush=True)

        if args.mic:
            mic = SoundDeviceMicrophone(engine_config.audio)
            relay = engine.create_capture_relay(mic)
            await relay.start()
            print("Microphone on. Use /end when you finish speaking.", flush=True)

        while not stop.is_set():
            get_line = asyncio.ensure_future(lines.get())
            wait_stop = asyncio.ensure_future(stop.wait())
            done, _ = await asyncio.wait({get_line, wait_stop}, return_when=asyncio.FIRST_COMPLETED)
            for pending in (get_line, wait_stop):
                if pending not in done:
                    pending.cancel()
            if get_line not in done:
                break

            line = get_line.result()
            if not line:
                continue
            if line == COMMAND_QUIT:
                break
            if line == COMMAND_END:
                await engine.send_end_of_turn()
            elif line == COMMAND_INTERRUPT:
                await engine.interrupt()
            elif line == COMMAND_STATUS:
                print(json.dumps(engine.get_status(), indent=2, default=str), flush=True)
            elif line == COMMAND_LEVEL:
                print(format_level(mic.level) if mic is not None else "Microphone is off (start with --mic).", flush=True)
            else:
                await engine.send_text(line)

    except LiveError as e:
        logger.error("Session error: %s", e)
    finally:
        loop.remove_reader(sys.stdin.fileno())
        if relay is not None:
            await relay.stop()
        await engine.dispose()
        logger.info("Console stopped.")


def main():
    args = parse_args()

    if args.debug:
        os.environ["LIVESESSION_DEBUG"] = "1"

    configure_logging(
        level="DEBUG" if args.debug else "WARNING",
        json_format=not args.debug,
        non_blocking=True,
        stream=sys.stderr,
    )

    try:
        asyncio.run(run_console(args))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(2)


if __name__ == "__main__":
    main()
