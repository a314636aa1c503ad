# voice/orchestrator.py

import asyncio
import logging
from typing import Any, Optional, Set

from core.event_bus import EventBus
from events.events import (
    CaptureWarning, CommandRecognized, SessionClosed, SessionOpened, UtteranceCaptured,
)
from voice.capture import CaptureController
from voice.command_parser import CommandParser
from voice.commands import Action, help_text
from voice.feedback import FeedbackQueue
from voice.session import Recipe, Session

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)

WELCOME = ("Welcome to hands-free cooking mode! I'll guide you through preparing {title}. "
           "Say 'help' to hear available commands.")
PAUSED = "Voice recognition paused. Resume listening when you need me again."
RESUMED = "Voice recognition resumed."
UNMUTED = "Voice feedback is back on."


class SessionOrchestrator:
    """
    Owns one guided session and routes final utterances through the parser
    into the session state machine, queueing whatever it answers.
    """

    def __init__(
        self,
        bus: EventBus,
        capture: CaptureController,
        feedback: FeedbackQueue,
        parser: Optional[CommandParser] = None,
        output: Any = None,     # long-lived audio output: .open() / .close()
    ):
        self.bus = bus
        self.capture = capture
        self.feedback = feedback
        self.parser = parser or CommandParser()
        self.output = output
        self.session: Optional[Session] = None
        self.last_feedback: Optional[str] = None
        self.last_warning: Optional[CaptureWarning] = None
        self._tasks: Set[asyncio.Task] = set()

        capture.on_final_utterance(self._on_utterance)
        bus.subscribe(CaptureWarning, self._on_warning)

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    @property
    def is_open(self) -> bool:
        return self.session is not None

    async def open(self, recipe: Recipe):
        if self.session is not None:
            await self.close()
        self.session = Session(recipe)
        self.last_feedback = None
        self.last_warning = None
        if self.output is not None:
            await self.output.open()
        self.capture.open()
        self.feedback.unmute()
        await self.capture.start()
        self._say(WELCOME.format(title=recipe.title))
        self._say(self.session.repeat())
        self.bus.emit(SessionOpened(title=recipe.title))
        logger.info("Guided session opened: %s", recipe.title)

    async def close(self):
        if self.session is None:
            return
        title = self.session.recipe.title
        self.feedback.clear()
        try:
            await self.capture.close()
            for task in list(self._tasks):
                task.cancel()
            await asyncio.gather(*self._tasks, return_exceptions=True)
            self._tasks.clear()
        finally:
            if self.output is not None:
                await self.output.close()
            self.session = None
        self.bus.emit(SessionClosed(title=title))
        logger.info("Guided session closed: %s", title)

    async def resume_listening(self):
        """Manual restart after a pause or a capture warning."""
        if self.session is None:
            return
        await self.capture.start()
        self._say(RESUMED)

    def handle_action(self, action: Action) -> Optional[str]:
        """Apply one command; used for voice and on-screen controls alike."""
        session = self.session
        if session is None:
            return None

        if action is Action.NEXT:
            text = session.next()
        elif action is Action.PREVIOUS:
            text = session.previous()
        elif action is Action.REPEAT:
            text = session.repeat()
        elif action is Action.COMPLETE:
            text = session.complete_item()
        elif action is Action.START_COOKING:
            text = session.advance_phase()
        elif action is Action.PAUSE:
            self._track(self.capture.pause())
            text = PAUSED
        elif action is Action.MUTE:
            self.feedback.mute()
            text = None
        elif action is Action.UNMUTE:
            self.feedback.unmute()
            text = UNMUTED
        elif action is Action.HELP:
            text = help_text(self.parser.commands)
        else:
            logger.warning("Unhandled action: %s", action)
            text = None

        self._say(text)
        return text

    # ── internals ─────────────────────────────────────────────────────────
    def _say(self, text: Optional[str]):
        if not text:
            return
        self.last_feedback = text
        self.feedback.enqueue(text)

    def _track(self, task: asyncio.Task):
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _on_utterance(self, ev: UtteranceCaptured):
        if self.session is None:
            return
        if self.capture.state.is_suppressed:
            logger.debug("Ignoring utterance while feedback plays: %r", ev.text)
            return
        found = self.parser.parse(ev.text)
        if found is None:
            return
        logger.info("Voice command %s from %r (score %.2f)", found.action.value, ev.text, found.score)
        self.bus.emit(CommandRecognized(text=ev.text, action=found.action.value,
                                        phrase=found.phrase, score=found.score))
        self.handle_action(found.action)

    def _on_warning(self, ev: CaptureWarning):
        self.last_warning = ev
