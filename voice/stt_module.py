# voice/stt_module.py

import os
import logging
import asyncio
import httpx
from pathlib import Path
from typing import Optional

from config import Config
from core.exceptions import CaptureError

logger = logging.getLogger(__name__)


class STTModule:
    """
    Resilient speech-to-text client,
    using manual retry/back-off and built-in timeouts.
    """

    def __init__(self,
                 url: Optional[str] = None,
                 language: Optional[str] = None,
                 timeout: Optional[float] = None,
                 max_retries: Optional[int] = None,
                 backoff_factor: Optional[float] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        config = Config.get_config()
        self.url = url or Config.url("asr")
        self.language = language or config["language"]
        self.timeout = timeout if timeout is not None else config["http"]["timeout"]
        self.max_retries = max_retries if max_retries is not None else config["http"]["max_retries"]
        self.backoff_factor = (backoff_factor if backoff_factor is not None
                               else config["http"]["backoff_factor"])
        self._transport = transport

    async def _post(self, url: str, **kwargs) -> httpx.Response:
        """
        POST with retries on network errors/timeouts.
        """
        delay = self.backoff_factor
        for attempt in range(1, self.max_retries + 1):
            try:
                async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                    resp = await client.post(url, **kwargs)
                    resp.raise_for_status()
                    return resp
            except (httpx.ConnectError, httpx.ReadTimeout, httpx.RemoteProtocolError) as e:
                logger.warning("Request to %s failed (attempt %d/%d): %s",
                               url, attempt, self.max_retries, e)
                if attempt == self.max_retries:
                    logger.error("Max retries reached for %s", url)
                    raise
                await asyncio.sleep(delay)
                delay *= 2
            except httpx.HTTPStatusError as e:
                # 4xx or 5xx: no point retrying
                logger.error("Server returned error for %s: %s", url, e)
                raise

    async def transcribe(self, audio_path: str) -> str:
        """
        Transcribe a recorded WAV file. Failures are raised as CaptureError
        using the capture service's error names so the controller can
        classify them.
        """
        if not os.path.isfile(audio_path):
            logger.warning("transcribe: file not found %s", audio_path)
            return ""

        logger.debug("Transcribing %s → %s", audio_path, self.url)
        filename = Path(audio_path).name
        headers = {"Accept": "application/json"}
        try:
            with open(audio_path, "rb") as f:
                files = {"audio_file": (filename, f, "audio/wav")}
                resp = await self._post(self.url, files=files,
                                        data={"language": self.language},
                                        headers=headers)
        except httpx.HTTPStatusError as e:
            if e.response.status_code in (401, 403):
                raise CaptureError("service-not-allowed", str(e)) from e
            raise CaptureError("network", str(e)) from e
        except httpx.HTTPError as e:
            raise CaptureError("network", str(e)) from e
        return resp.json().get("transcript", "").strip()
