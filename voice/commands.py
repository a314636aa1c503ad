# voice/commands.py

from dataclasses import dataclass
from enum import Enum
from typing import List, Tuple


class Action(str, Enum):
    NEXT = "next"
    PREVIOUS = "previous"
    REPEAT = "repeat"
    COMPLETE = "complete"
    START_COOKING = "start-cooking"
    PAUSE = "pause"
    MUTE = "mute"
    UNMUTE = "unmute"
    HELP = "help"


@dataclass(frozen=True)
class Command:
    phrases: Tuple[str, ...]
    action: Action
    description: str


# Order matters: the matcher breaks ties by position in this table.
VOCABULARY: Tuple[Command, ...] = (
    Command(("next", "next step", "continue"), Action.NEXT, "Move to next step"),
    Command(("back", "previous", "go back"), Action.PREVIOUS, "Go to previous step"),
    Command(("repeat", "say again", "repeat step"), Action.REPEAT, "Repeat current step"),
    Command(("done", "complete", "finished"), Action.COMPLETE, "Mark ingredient as measured"),
    Command(("start cooking", "begin cooking", "cook"), Action.START_COOKING, "Start cooking phase"),
    Command(("pause", "stop listening"), Action.PAUSE, "Pause voice recognition"),
    Command(("mute", "be quiet"), Action.MUTE, "Mute voice feedback"),
    Command(("unmute", "voice on"), Action.UNMUTE, "Turn voice feedback back on"),
    Command(("help", "commands"), Action.HELP, "List voice commands"),
)


def lookup() -> List[Command]:
    return list(VOCABULARY)


def help_text(commands: List[Command] = None) -> str:
    """Spoken summary of the vocabulary, one leading phrase per command."""
    commands = commands if commands is not None else lookup()
    parts = [f"'{cmd.phrases[0]}' to {cmd.description.lower()}" for cmd in commands]
    return "You can say: " + ", ".join(parts) + "."
