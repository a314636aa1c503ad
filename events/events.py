from dataclasses import dataclass, field
import time
from typing import Optional

from core.event_bus import Event

# ── Capture service → Capture Controller ──────────────────────────────────

@dataclass
class UtteranceCaptured(Event):
    text: str               # transcribed speech
    is_final: bool = True   # interim results are dropped by the controller
    timestamp: float = field(default_factory=time.time)

@dataclass
class CaptureStarted(Event):
    pass

@dataclass
class CaptureEnded(Event):
    pass

@dataclass
class CaptureFailed(Event):
    kind: str               # e.g. "no-speech", "network", "not-allowed"
    message: str = ""

# ── Capture Controller → application ──────────────────────────────────────

@dataclass
class CaptureWarning(Event):
    kind: str
    message: str
    recoverable: bool       # True when a manual restart can fix it

# ── Orchestrator / Feedback Queue ─────────────────────────────────────────

@dataclass
class CommandRecognized(Event):
    text: str
    action: str
    phrase: str
    score: float

@dataclass
class FeedbackPlayed(Event):
    text: str
    source: str             # "remote" or "local"

@dataclass
class FeedbackDropped(Event):
    text: str
    reason: str

@dataclass
class SessionOpened(Event):
    title: str

@dataclass
class SessionClosed(Event):
    title: Optional[str] = None
