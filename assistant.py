# assistant.py

import asyncio
import json
import logging
import sys

from config import Config
from core.event_bus import EventBus
from events.events import CaptureWarning, CommandRecognized
from voice.capture import CaptureController, RetryPolicy
from voice.command_parser import CommandParser
from voice.feedback import FeedbackQueue
from voice.orchestrator import SessionOrchestrator
from voice.session import Recipe
from voice.stt_module import STTModule
from voice.tts_httpx import TTSClient


def build(bus: EventBus) -> SessionOrchestrator:
    """Wire the real microphone, speaker and HTTP providers from settings."""
    from audio.audio_module import AudioModule, AudioOutput
    from audio.local_tts import LocalSynthesizer
    from voice.voice_module import VoiceModule

    config = Config.get_config()
    capture_cfg = config["capture"]

    audio = AudioModule(vad_aggressiveness=capture_cfg["vad_aggressiveness"])
    source = VoiceModule(bus, audio, STTModule(), silence_duration=capture_cfg["silence_duration"])
    capture = CaptureController(
        bus, source,
        retry=RetryPolicy(delays=tuple(capture_cfg["restart_delays"])),
        resume_delay=capture_cfg["resume_delay"],
        healthy_after=capture_cfg["healthy_after"],
    )
    output = AudioOutput()
    feedback = FeedbackQueue(bus, TTSClient(), LocalSynthesizer(**config["local_tts"]), output, capture)
    parser = CommandParser(threshold=config["matcher"]["threshold"],
                           max_words=config["matcher"]["max_words"])
    return SessionOrchestrator(bus, capture, feedback, parser, output=output)


async def main(recipe_path: str):
    with open(recipe_path, "r") as f:
        recipe = Recipe.from_dict(json.load(f))

    bus = EventBus()
    orchestrator = build(bus)

    def handle_command(ev: CommandRecognized):
        print(f"[APP] {ev.action!r} from {ev.text!r}")

    def handle_warning(ev: CaptureWarning):
        print(f"[APP] Voice warning: {ev.message}")

    bus.subscribe(CommandRecognized, handle_command)
    bus.subscribe(CaptureWarning, handle_warning)

    try:
        async with orchestrator:
            await orchestrator.open(recipe)
            # run until interrupted
            await asyncio.Event().wait()
    finally:
        orchestrator.feedback.local.close()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO,
                        format="%(asctime)s [%(levelname)s] %(name)s – %(message)s")
    if len(sys.argv) != 2:
        print("usage: python assistant.py <recipe.json>")
        sys.exit(2)
    try:
        asyncio.run(main(sys.argv[1]))
    except KeyboardInterrupt:
        pass
