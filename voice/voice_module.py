import asyncio
import logging
import os
from typing import Any, Optional

from core.event_bus import EventBus
from core.exceptions import CaptureError
from events.events import CaptureEnded, CaptureFailed, CaptureStarted, UtteranceCaptured
from voice.stt_module import STTModule

# Configure logger
logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)


class VoiceModule:
    """
    Capture service: listens for speech (via VAD), transcribes each
    utterance and reports it on the bus as a final UtteranceCaptured.
    Lifecycle is reported with CaptureStarted / CaptureFailed / CaptureEnded.
    """
    def __init__(
        self,
        bus: EventBus,
        audio: Any,             # .record(silence_duration, tmp_dir) -> wav path
        stt: STTModule,
        silence_duration: float = 1.0,
        tmp_dir: str = "tmp",
    ):
        self.bus = bus
        self.audio = audio
        self.stt = stt
        self.silence_duration = silence_duration
        self.tmp_dir = tmp_dir
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self):
        if self.running:
            return
        self._task = asyncio.create_task(self._run())
        logger.info("VoiceModule started")

    async def stop(self):
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
            logger.info("VoiceModule stopped")

    async def _run(self):
        self.bus.emit(CaptureStarted())
        try:
            while True:
                logger.info("Waiting for user speech...")
                audio_path = await self.audio.record(silence_duration=self.silence_duration,
                                                     tmp_dir=self.tmp_dir)
                try:
                    text = await self.stt.transcribe(audio_path)
                finally:
                    self._discard(audio_path)
                logger.info("Transcribed text: %r", text)

                if not text:
                    logger.info("No user input; listening again")
                    continue
                self.bus.emit(UtteranceCaptured(text=text, is_final=True))

        except asyncio.CancelledError:
            logger.info("VoiceModule cancelled")
        except CaptureError as e:
            logger.warning("Capture failed (%s): %s", e.kind, e)
            self.bus.emit(CaptureFailed(kind=e.kind, message=str(e)))
        except Exception as e:
            logger.error("Unexpected error in VoiceModule loop: %s", e, exc_info=True)
            self.bus.emit(CaptureFailed(kind="unknown", message=str(e)))
        finally:
            self.bus.emit(CaptureEnded())

    @staticmethod
    def _discard(path: str):
        try:
            os.remove(path)
        except OSError as e:
            logger.debug("Could not remove %s: %s", path, e)
