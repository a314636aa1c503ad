# core/exceptions.py
"""
Custom exceptions shared by the capture, synthesis and playback layers.
"""


class CaptureError(Exception):
    """
    Raised by a capture source when listening cannot start or continue.
    `kind` uses the platform capture service's error names
    (no-speech, aborted, network, not-allowed, audio-capture, ...).
    """

    def __init__(self, kind: str, message: str = ""):
        super().__init__(message or kind)
        self.kind = kind


class SynthesisError(Exception):
    """Remote or local speech synthesis failed for one feedback item."""


class AudioOutputError(Exception):
    """The audio output device could not be opened or written to."""
