# audio/local_tts.py

import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor

import pyttsx3

from core.exceptions import SynthesisError

logger = logging.getLogger(__name__)

BASE_RATE = 200     # pyttsx3 words per minute at rate 1.0


class LocalSynthesizer:
    """
    On-device fallback voice. Speaks immediately and returns when the
    utterance has finished. The pyttsx3 engine lives on a single worker
    thread for the lifetime of this object.
    """

    def __init__(self, rate: float = 0.9, pitch: float = 1.0, volume: float = 0.8):
        self.rate = rate
        self.pitch = pitch
        self.volume = volume
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="local-tts")
        self._engine = None

    async def speak(self, text: str, rate: float = None, pitch: float = None,
                    volume: float = None):
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(
            self._executor, self._speak_blocking, text,
            self.rate if rate is None else rate,
            self.pitch if pitch is None else pitch,
            self.volume if volume is None else volume,
        )

    def _speak_blocking(self, text: str, rate: float, pitch: float, volume: float):
        # pyttsx3 reports driver failures through the "error" callback,
        # never by raising from say()/runAndWait()
        errors = []

        def on_error(name=None, exception=None):
            errors.append(exception)

        try:
            if self._engine is None:
                self._engine = pyttsx3.init()
            engine = self._engine
            token = engine.connect("error", on_error)
            try:
                engine.setProperty("rate", int(BASE_RATE * rate))
                engine.setProperty("volume", max(0.0, min(1.0, volume)))
                engine.setProperty("pitch", pitch)
                engine.say(text)
                engine.runAndWait()
            finally:
                engine.disconnect(token)
        except Exception as e:
            self._engine = None
            raise SynthesisError(f"Local synthesis failed: {e}") from e

        failures = [e for e in errors if not isinstance(e, KeyError)]
        if len(failures) < len(errors):
            logger.debug("Speech driver has no pitch control")
        if failures:
            self._engine = None
            raise SynthesisError(f"Local synthesis failed: {failures[0]}") from failures[0]

    def close(self):
        self._executor.shutdown(wait=False)
