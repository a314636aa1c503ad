# voice/feedback.py

import asyncio
import logging
from collections import deque
from typing import Any, Optional

from core.event_bus import EventBus
from core.exceptions import AudioOutputError, SynthesisError
from events.events import FeedbackDropped, FeedbackPlayed

logger = logging.getLogger(__name__)


class FeedbackQueue:
    """
    Serial queue of spoken feedback.

    Items are spoken one at a time in enqueue order. Each item is synthesized
    by the remote provider and played to completion on the session's audio
    output; if either step fails the local synthesizer speaks it instead, and
    if that fails too the item is dropped.

    Capture is suppressed before the first item of a drain and resumed (after
    the capture controller's trailing delay) once the queue is empty.
    """

    def __init__(
        self,
        bus: EventBus,
        remote: Any,        # .synthesize(text) -> bytes
        local: Any,         # .speak(text)
        output: Any,        # .play(wav_bytes)
        capture: Any,       # .hold() / .suppress() / .resume()
    ):
        self.bus = bus
        self.remote = remote
        self.local = local
        self.output = output
        self.capture = capture
        self.muted = False
        self._items = deque()
        self._draining = False
        self._generation = 0
        self._task: Optional[asyncio.Task] = None

    def __len__(self):
        return len(self._items)

    @property
    def is_draining(self) -> bool:
        return self._draining

    def enqueue(self, text: str) -> bool:
        if not text:
            return False
        if self.muted:
            logger.info("Muted; not speaking: %r", text)
            self.bus.emit(FeedbackDropped(text=text, reason="muted"))
            return False
        self._items.append(text)
        if not self._draining:
            self._draining = True
            self.capture.hold()
            self._task = asyncio.create_task(self._drain(self._generation))
        return True

    def mute(self):
        self.muted = True

    def unmute(self):
        self.muted = False

    def clear(self):
        """Drop pending items; an in-flight synthesis result is discarded."""
        self._items.clear()
        self._generation += 1

    async def wait_idle(self):
        while self._task is not None and not self._task.done():
            await asyncio.gather(self._task, return_exceptions=True)

    async def _drain(self, generation: int):
        try:
            await self.capture.suppress()
            while self._items and generation == self._generation:
                text = self._items.popleft()
                try:
                    await self._speak(text, generation)
                except Exception as e:
                    logger.error("Dropping feedback %r: %s", text, e, exc_info=True)
                    self.bus.emit(FeedbackDropped(text=text, reason="error"))
        finally:
            self._draining = False
            if self._items:
                # cleared mid-drain, then new items arrived
                self._draining = True
                self._task = asyncio.create_task(self._drain(self._generation))
            else:
                self.capture.resume()

    async def _speak(self, text: str, generation: int):
        try:
            audio = await self.remote.synthesize(text)
            if generation != self._generation:
                logger.debug("Discarding synthesis for cleared item: %r", text)
                return
            await self.output.play(audio)
            self.bus.emit(FeedbackPlayed(text=text, source="remote"))
            return
        except (SynthesisError, AudioOutputError) as e:
            logger.warning("Remote feedback failed, using local voice: %s", e)

        if generation != self._generation:
            return
        try:
            await self.local.speak(text)
            self.bus.emit(FeedbackPlayed(text=text, source="local"))
        except SynthesisError as e:
            logger.error("Local synthesis failed; dropping %r: %s", text, e)
            self.bus.emit(FeedbackDropped(text=text, reason="synthesis"))
