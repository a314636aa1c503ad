# voice/command_parser.py

import logging
import re
from dataclasses import dataclass
from typing import List, Optional

import Levenshtein

from voice.commands import Action, Command, lookup

logger = logging.getLogger(__name__)

_PUNCT_RE = re.compile(r"[^\w\s']")
_SPACE_RE = re.compile(r"\s+")


@dataclass(frozen=True)
class Match:
    action: Action
    phrase: str
    score: float    # 1.0 for exact matches, similarity otherwise
    exact: bool


def normalize(text: str) -> str:
    text = _PUNCT_RE.sub(" ", (text or "").lower())
    return _SPACE_RE.sub(" ", text).strip()


def similarity(a: str, b: str) -> float:
    """(max_len - edit_distance) / max_len; 1.0 for two empty strings."""
    longest = max(len(a), len(b))
    if longest == 0:
        return 1.0
    return (longest - Levenshtein.distance(a, b)) / longest


class CommandParser:
    """
    Maps a transcribed utterance onto at most one vocabulary action.

    Exact pass: the first phrase (in vocabulary order) found at word
    boundaries inside the utterance wins. Fuzzy pass, only when nothing
    matched exactly: the phrase with the highest normalized edit-distance
    similarity wins if it reaches `threshold`.

    Utterances longer than `max_words` are never treated as commands; this
    keeps narrated step text that leaks into the microphone from triggering
    navigation.
    """

    def __init__(self,
                 commands: List[Command] = None,
                 threshold: float = 0.6,
                 max_words: int = 8):
        self.commands = commands if commands is not None else lookup()
        self.threshold = threshold
        self.max_words = max_words
        self._patterns = [
            (cmd, phrase, re.compile(r"\b" + re.escape(phrase.lower()) + r"\b"))
            for cmd in self.commands
            for phrase in cmd.phrases
        ]

    def parse(self, utterance: str) -> Optional[Match]:
        text = normalize(utterance)
        if not text:
            return None
        if self.max_words and len(text.split()) > self.max_words:
            logger.debug("Ignoring long utterance (%d words): %r",
                         len(text.split()), text)
            return None

        for cmd, phrase, pattern in self._patterns:
            if pattern.search(text):
                return Match(cmd.action, phrase, 1.0, True)

        best = None
        best_score = 0.0
        for cmd, phrase, _ in self._patterns:
            score = similarity(text, phrase.lower())
            if score > best_score:
                best, best_score = (cmd, phrase), score

        if best is not None and best_score >= self.threshold:
            logger.debug("Fuzzy match %r -> %r (%.2f)", text, best[1], best_score)
            return Match(best[0].action, best[1], best_score, False)

        logger.info("No matching voice command found for: %r", text)
        return None

    def match(self, utterance: str) -> Optional[Action]:
        found = self.parse(utterance)
        return found.action if found else None
