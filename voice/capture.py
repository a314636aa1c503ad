# voice/capture.py

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, List, Optional, Tuple

from core.event_bus import EventBus
from core.exceptions import CaptureError
from events.events import (
    CaptureEnded, CaptureFailed, CaptureStarted, CaptureWarning, UtteranceCaptured,
)

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)

# Error classes reported by the capture service.
TRANSIENT_ERRORS = frozenset({"no-speech", "aborted", "network"})
FATAL_ERRORS = frozenset({"not-allowed", "service-not-allowed", "audio-capture"})


def is_transient(kind: str) -> bool:
    return kind in TRANSIENT_ERRORS


class CaptureStatus(str, Enum):
    STOPPED = "stopped"
    LISTENING = "listening"
    SUSPENDED = "suspended"


@dataclass
class CaptureState:
    is_listening: bool = False
    is_suppressed: bool = False
    manually_stopped: bool = False


@dataclass(frozen=True)
class RetryPolicy:
    """Delay before each auto-restart attempt; one attempt per entry."""
    delays: Tuple[float, ...] = (0.3, 1.5)

    @property
    def max_attempts(self) -> int:
        return len(self.delays)

    def delay(self, attempt: int) -> Optional[float]:
        if attempt < len(self.delays):
            return self.delays[attempt]
        return None


class CaptureController:
    """
    Owns the continuous-capture lifecycle on top of a capture source.

    The source must provide `async start()` (raising CaptureError when it
    cannot listen) and `async stop()`, and report on the bus with
    CaptureStarted / CaptureEnded / CaptureFailed / UtteranceCaptured.

    A restarted stream only counts as recovered once it delivers an utterance
    or stays up for `healthy_after` seconds; a stream that dies sooner uses
    up one restart attempt.
    """

    def __init__(
        self,
        bus: EventBus,
        source: Any,
        retry: RetryPolicy = RetryPolicy(),
        resume_delay: float = 0.6,
        healthy_after: float = 2.0,
    ):
        self.bus = bus
        self.source = source
        self.retry = retry
        self.resume_delay = resume_delay
        self.healthy_after = healthy_after
        self.state = CaptureState()
        self.last_error: Optional[str] = None

        self._callbacks: List[Callable[[UtteranceCaptured], Any]] = []
        self._session_open = False
        self._wanted = False        # an explicit start() is in effect
        self._starting = False
        self._expect_end = False    # the next CaptureEnded was requested by us
        self._attempts = 0
        self._started_at: Optional[float] = None    # loop time the current stream came up
        self._restart_task: Optional[asyncio.Task] = None
        self._resume_task: Optional[asyncio.Task] = None

        bus.subscribe(UtteranceCaptured, self._on_utterance)
        bus.subscribe(CaptureStarted, self._on_started)
        bus.subscribe(CaptureEnded, self._on_ended)
        bus.subscribe(CaptureFailed, self._on_failed)

    # ── public API ────────────────────────────────────────────────────────
    @property
    def status(self) -> CaptureStatus:
        if self.state.is_listening:
            return CaptureStatus.LISTENING
        if self.state.is_suppressed and self._wanted and not self.state.manually_stopped:
            return CaptureStatus.SUSPENDED
        return CaptureStatus.STOPPED

    def on_final_utterance(self, callback: Callable[[UtteranceCaptured], Any]):
        self._callbacks.append(callback)

    def open(self):
        self._session_open = True
        self.state = CaptureState()
        self.last_error = None
        self._wanted = False
        self._attempts = 0

    async def close(self):
        self._cancel_tasks()
        await self.stop(manual=True)
        self._session_open = False
        self.state.is_suppressed = False
        self._wanted = False

    async def start(self):
        """Explicit start; never raises."""
        if not self._session_open:
            logger.warning("start() ignored: no open session")
            return
        self.state.manually_stopped = False
        self._wanted = True
        self._attempts = 0
        self.last_error = None
        if self.state.is_suppressed:
            logger.debug("Capture start deferred until playback ends")
            return
        if not self.state.is_listening:
            await self._start_source()

    async def stop(self, manual: bool = True):
        if manual:
            self.state.manually_stopped = True
        if self._restart_task and not self._restart_task.done():
            self._restart_task.cancel()
        self._restart_task = None
        if self.state.is_listening or self._starting:
            self.state.is_listening = False
            await self._stop_source()

    def pause(self) -> asyncio.Task:
        """Manual stop requested from a synchronous callback."""
        self.state.manually_stopped = True
        return asyncio.create_task(self.stop(manual=True))

    def hold(self):
        """Mark capture suppressed right away; utterances are dropped from now on."""
        self.state.is_suppressed = True
        if self._resume_task and not self._resume_task.done():
            self._resume_task.cancel()
        self._resume_task = None

    async def suppress(self):
        """Stop listening for as long as feedback is pending or playing."""
        self.hold()
        if self.state.is_listening:
            self.state.is_listening = False
            await self._stop_source()

    def resume(self, delay: Optional[float] = None):
        """Lift suppression after `delay` seconds of silence."""
        delay = self.resume_delay if delay is None else delay
        if self._resume_task and not self._resume_task.done():
            self._resume_task.cancel()
        self._resume_task = asyncio.create_task(self._resume_after(delay))

    async def wait_idle(self):
        """Wait for pending resume / restart timers to run out."""
        while True:
            pending = [t for t in (self._resume_task, self._restart_task)
                       if t is not None and not t.done()]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    # ── internals ─────────────────────────────────────────────────────────
    def _should_listen(self) -> bool:
        return (self._session_open and self._wanted
                and not self.state.manually_stopped
                and not self.state.is_suppressed)

    def _cancel_tasks(self):
        for task in (self._restart_task, self._resume_task):
            if task is not None and not task.done():
                task.cancel()
        self._restart_task = None
        self._resume_task = None

    async def _start_source(self):
        if self._starting:
            return
        self._starting = True
        try:
            await self.source.start()
        except CaptureError as e:
            self._handle_error(e.kind, str(e))
            return
        except Exception as e:
            logger.error("Capture source failed to start: %s", e, exc_info=True)
            self._handle_error("unknown", str(e))
            return
        finally:
            self._starting = False

        self._expect_end = False
        if not self._should_listen():
            # suppressed or stopped while the source was starting
            await self._stop_source()
            return
        self.state.is_listening = True
        self._started_at = asyncio.get_running_loop().time()
        logger.info("Listening for voice commands")

    async def _stop_source(self):
        self._expect_end = True
        try:
            await self.source.stop()
        except Exception as e:
            logger.warning("Capture source failed to stop cleanly: %s", e, exc_info=True)

    async def _resume_after(self, delay: float):
        if delay > 0:
            await asyncio.sleep(delay)
        self.state.is_suppressed = False
        if self._should_listen() and not self.state.is_listening:
            await self._start_source()

    async def _restart_after(self, delay: float):
        await asyncio.sleep(delay)
        self._restart_task = None
        if not self._should_listen() or self.state.is_listening:
            logger.debug("Auto-restart skipped")
            return
        logger.info("Restarting capture (attempt %d/%d)",
                    self._attempts, self.retry.max_attempts)
        await self._start_source()

    def _schedule_restart(self):
        if self._restart_task is not None and not self._restart_task.done():
            return
        delay = self.retry.delay(self._attempts)
        if delay is None:
            self._wanted = False
            self._warn(self.last_error or "unknown",
                       "Voice recognition stopped after repeated failures. "
                       "Start listening again to retry.",
                       recoverable=True)
            return
        self._attempts += 1
        self._restart_task = asyncio.create_task(self._restart_after(delay))

    def _handle_error(self, kind: str, message: str):
        self.last_error = kind
        self.state.is_listening = False
        if is_transient(kind):
            logger.debug("Transient capture error %r: %s", kind, message)
            if self._should_listen():
                self._schedule_restart()
            return
        self._wanted = False
        self._warn(kind, message or "Voice recognition is unavailable.",
                   recoverable=kind not in FATAL_ERRORS)

    def _warn(self, kind: str, message: str, recoverable: bool):
        logger.warning("Capture warning [%s]: %s", kind, message)
        self.bus.emit(CaptureWarning(kind=kind, message=message, recoverable=recoverable))

    # ── bus handlers ──────────────────────────────────────────────────────
    def _on_started(self, ev: CaptureStarted):
        logger.debug("Capture stream started")

    def _stream_was_healthy(self) -> bool:
        started, self._started_at = self._started_at, None
        if started is None:
            return False
        return asyncio.get_running_loop().time() - started >= self.healthy_after

    def _on_ended(self, ev: CaptureEnded):
        self.state.is_listening = False
        if self._stream_was_healthy():
            self._attempts = 0
        if self._expect_end:
            self._expect_end = False
            return
        if self._should_listen():
            logger.debug("Capture ended unexpectedly; scheduling restart")
            self._schedule_restart()

    def _on_failed(self, ev: CaptureFailed):
        if is_transient(ev.kind):
            self.last_error = ev.kind
            logger.debug("Transient capture error %r: %s", ev.kind, ev.message)
            return
        self._handle_error(ev.kind, ev.message)

    def _on_utterance(self, ev: UtteranceCaptured):
        if not ev.is_final:
            return
        if not self._session_open:
            return
        if self.state.is_suppressed:
            logger.debug("Dropping utterance heard during playback: %r", ev.text)
            return
        self._attempts = 0
        for callback in list(self._callbacks):
            callback(ev)
