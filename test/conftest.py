import asyncio

import pytest

from core.event_bus import EventBus
from core.exceptions import AudioOutputError, SynthesisError
from events.events import CaptureEnded, CaptureFailed, CaptureStarted, UtteranceCaptured
from voice.capture import CaptureController, RetryPolicy
from voice.feedback import FeedbackQueue
from voice.orchestrator import SessionOrchestrator
from voice.session import PreparationItem, Recipe


class FakeSource:
    """Stands in for the platform capture service."""

    def __init__(self, bus):
        self.bus = bus
        self.listening = False
        self.starts = 0
        self.stops = 0
        self.failures = []      # CaptureErrors raised by successive start() calls

    async def start(self):
        self.starts += 1
        if self.failures:
            raise self.failures.pop(0)
        self.listening = True
        self.bus.emit(CaptureStarted())

    async def stop(self):
        self.stops += 1
        if self.listening:
            self.listening = False
            self.bus.emit(CaptureEnded())

    def hear(self, text, is_final=True):
        self.bus.emit(UtteranceCaptured(text=text, is_final=is_final))

    def crash(self, kind="network"):
        self.listening = False
        self.bus.emit(CaptureFailed(kind=kind, message=kind))
        self.bus.emit(CaptureEnded())


class FakeRemote:
    def __init__(self):
        self.requests = []
        self.fail = False

    async def synthesize(self, text):
        self.requests.append(text)
        await asyncio.sleep(0)
        if self.fail:
            raise SynthesisError("provider rejected the request")
        return text.encode()


class FakeLocal:
    def __init__(self, log, source):
        self.log = log
        self.source = source
        self.spoken = []
        self.fail = False

    async def speak(self, text):
        self.log.append(("local", text, self.source.listening))
        await asyncio.sleep(0)
        if self.fail:
            raise SynthesisError("no local voice")
        self.spoken.append(text)


class FakeOutput:
    def __init__(self, log, source):
        self.log = log
        self.source = source
        self.played = []
        self.opened = 0
        self.closed = 0
        self.fail = False

    async def open(self):
        self.opened += 1

    async def close(self):
        self.closed += 1

    async def play(self, audio):
        self.log.append(("remote", audio.decode(), self.source.listening))
        await asyncio.sleep(0)
        if self.fail:
            raise AudioOutputError("device busy")
        self.played.append(audio.decode())


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def source(bus):
    return FakeSource(bus)


@pytest.fixture
def capture(bus, source):
    return CaptureController(bus, source, retry=RetryPolicy(delays=(0.01, 0.02)), resume_delay=0.01)


@pytest.fixture
def playback_log():
    return []


@pytest.fixture
def remote():
    return FakeRemote()


@pytest.fixture
def local(playback_log, source):
    return FakeLocal(playback_log, source)


@pytest.fixture
def output(playback_log, source):
    return FakeOutput(playback_log, source)


@pytest.fixture
def feedback(bus, remote, local, output, capture):
    return FeedbackQueue(bus, remote, local, output, capture)


@pytest.fixture
def recipe():
    return Recipe(
        title="Pancakes",
        ingredients=[
            PreparationItem(1, "flour", 200, "g"),
            PreparationItem(2, "milk", 300, "ml"),
            PreparationItem(3, "eggs", 2),
        ],
        instructions=[
            "Whisk everything together.",
            "Rest the batter for ten minutes.",
            "Fry in a hot pan.",
        ],
        ready_in_minutes=25,
    )


@pytest.fixture
def orchestrator(bus, capture, feedback, output):
    return SessionOrchestrator(bus, capture, feedback, output=output)


@pytest.fixture
def settle(feedback, capture):
    async def _settle():
        """Let queued feedback play out and capture come back."""
        for _ in range(3):
            await feedback.wait_idle()
            await capture.wait_idle()
            await asyncio.sleep(0)
    return _settle
