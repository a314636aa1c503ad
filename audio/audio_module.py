import asyncio
import io
import logging
import os
import threading
import uuid
import wave
from typing import Optional

import pasimple
import webrtcvad

from core.exceptions import AudioOutputError, CaptureError

logger = logging.getLogger(__name__)

_SAMPLE_FORMATS = {
    1: pasimple.PA_SAMPLE_U8,
    2: pasimple.PA_SAMPLE_S16LE,
    4: pasimple.PA_SAMPLE_S32LE,
}


# ── AudioModule: continuous VAD capture ───────────────────────────────────
class AudioModule:
    def __init__(
        self,
        format=pasimple.PA_SAMPLE_S16LE,
        channels=1,
        sample_rate=16000,
        frame_ms=30,
        vad_aggressiveness=1,
    ):
        # Recording/VAD config
        self.FORMAT = format
        self.CHANNELS = channels
        self.SAMPLE_RATE = sample_rate
        self.SAMPLE_WIDTH = pasimple.format2width(format)
        self.FRAME_MS = frame_ms
        self.FRAME_BYTES = int(sample_rate * frame_ms / 1000) * self.SAMPLE_WIDTH * channels

        # VAD
        self.vad = webrtcvad.Vad(vad_aggressiveness)
        self._vad_stop: Optional[threading.Event] = None
        self._vad_thread: Optional[threading.Thread] = None
        self.loop = None
        self.frame_queue: Optional[asyncio.Queue] = None

    ##### VAD-based record #####
    async def record(self, silence_duration: float = 1.0, tmp_dir: str = 'tmp',
                     min_speech_duration: float = 0.3) -> str:
        """
        Listen via VAD, start on speech, stop after `silence_duration` of
        silence, save a WAV to `tmp_dir` and return its path. Raises
        CaptureError("audio-capture") if the input device fails and
        CaptureError("aborted") if the stream ends on its own.
        """
        frames = await self.start_vad_stream()
        buffer = bytearray()
        in_speech = 0
        silence_count = 0
        threshold = int((silence_duration * 1000) / self.FRAME_MS)
        speech_threshold = int((min_speech_duration * 1000) / self.FRAME_MS)
        try:
            while True:
                frame, is_speech = await frames.get()
                if isinstance(frame, CaptureError):
                    raise frame
                if isinstance(frame, Exception):
                    raise CaptureError("audio-capture", str(frame)) from frame
                if is_speech:
                    in_speech += 1
                    buffer.extend(frame)
                    silence_count = 0
                elif in_speech > speech_threshold:
                    buffer.extend(frame)
                    silence_count += 1
                    if silence_count >= threshold:
                        break
        finally:
            self.stop_vad_stream()

        path = os.path.join(tmp_dir, f"{uuid.uuid4()}.wav")
        os.makedirs(tmp_dir, exist_ok=True)
        with wave.open(path, 'wb') as wf:
            wf.setnchannels(self.CHANNELS)
            wf.setsampwidth(self.SAMPLE_WIDTH)
            wf.setframerate(self.SAMPLE_RATE)
            wf.writeframes(bytes(buffer))
        return path

    async def start_vad_stream(self) -> asyncio.Queue:
        """
        Open a record stream and return the queue its frames arrive on.
        A previous stream's reader thread is joined first so only one
        microphone stream is ever open.
        """
        if self._vad_stop is not None and not self._vad_stop.is_set():
            return self.frame_queue
        self.loop = asyncio.get_running_loop()
        previous = self._vad_thread
        if previous is not None and previous.is_alive():
            await self.loop.run_in_executor(None, previous.join)
        self.frame_queue = asyncio.Queue()
        self._vad_stop = threading.Event()
        self._vad_thread = threading.Thread(target=self._vad_reader,
                                            args=(self._vad_stop, self.frame_queue),
                                            daemon=True)
        self._vad_thread.start()
        return self.frame_queue

    def stop_vad_stream(self):
        if self._vad_stop is not None:
            self._vad_stop.set()

    def _vad_reader(self, stop: threading.Event, frames: asyncio.Queue):
        loop = self.loop

        def push(item):
            if not loop.is_closed():
                loop.call_soon_threadsafe(frames.put_nowait, item)

        try:
            with pasimple.PaSimple(pasimple.PA_STREAM_RECORD, self.FORMAT,
                                   self.CHANNELS, self.SAMPLE_RATE) as pa:
                while not stop.is_set():
                    frame = pa.read(self.FRAME_BYTES)
                    if len(frame) < self.FRAME_BYTES:
                        if not stop.is_set():
                            logger.warning("Microphone stream ended (short read)")
                            push((CaptureError("aborted", "microphone stream ended"), False))
                        break
                    push((frame, self.vad.is_speech(frame, self.SAMPLE_RATE)))
        except Exception as e:
            logger.error("Microphone stream failed: %s", e, exc_info=True)
            push((e, False))
        finally:
            stop.set()


# ── AudioOutput: one playback stream for the whole session ────────────────
class AudioOutput:
    """
    Long-lived playback stream, opened at session open and released at
    close. WAV clips are written in chunks from a worker thread and the
    coroutine returns once the device has drained.
    """

    def __init__(self, chunk_ms: int = 100):
        self.chunk_ms = chunk_ms
        self._pa = None
        self._params = None     # (sample_width, channels, rate)
        self._lock = asyncio.Lock()
        self._closing = False

    async def open(self, sample_width: int = 2, channels: int = 1, rate: int = 22050):
        self._closing = False
        await self._ensure_stream((sample_width, channels, rate))

    async def close(self):
        self._closing = True
        async with self._lock:
            await self._release()

    async def play(self, wav_bytes: bytes):
        try:
            with wave.open(io.BytesIO(wav_bytes), 'rb') as wf:
                params = (wf.getsampwidth(), wf.getnchannels(), wf.getframerate())
                frames = wf.readframes(wf.getnframes())
        except (wave.Error, EOFError) as e:
            raise AudioOutputError(f"Unreadable audio clip: {e}") from e

        async with self._lock:
            if self._closing:
                raise AudioOutputError("Audio output is closed")
            await self._ensure_stream(params)
            loop = asyncio.get_running_loop()
            chunk = max(1, int(params[2] * self.chunk_ms / 1000)) * params[0] * params[1]
            await loop.run_in_executor(None, self._write, frames, chunk)

    def _write(self, frames: bytes, chunk: int):
        try:
            for offset in range(0, len(frames), chunk):
                if self._closing:
                    self._pa.flush()
                    raise AudioOutputError("Playback interrupted by close")
                self._pa.write(frames[offset:offset + chunk])
            self._pa.drain()
        except pasimple.PaSimpleError as e:
            raise AudioOutputError(f"Playback failed: {e}") from e

    async def _ensure_stream(self, params):
        if self._pa is not None and self._params == params:
            return
        await self._release()
        sample_width, channels, rate = params
        if sample_width not in _SAMPLE_FORMATS:
            raise AudioOutputError(f"Unsupported sample width: {sample_width}")
        loop = asyncio.get_running_loop()
        try:
            self._pa = await loop.run_in_executor(
                None,
                lambda: pasimple.PaSimple(pasimple.PA_STREAM_PLAYBACK,
                                          _SAMPLE_FORMATS[sample_width], channels, rate,
                                          app_name="handsfree", stream_name="feedback"),
            )
        except pasimple.PaSimpleError as e:
            raise AudioOutputError(f"Cannot open audio output: {e}") from e
        self._params = params
        logger.info("Audio output opened (%d Hz, %d ch)", rate, channels)

    async def _release(self):
        if self._pa is None:
            return
        pa, self._pa, self._params = self._pa, None, None
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, pa.close)
        except pasimple.PaSimpleError as e:
            logger.warning("Failed to close audio output: %s", e)
