# voice/tts_httpx.py

import asyncio
import logging
from typing import Optional

import httpx

from config import Config
from core.exceptions import SynthesisError

logger = logging.getLogger(__name__)


class TTSClient:
    """
    Remote text-to-speech provider: POST {"text": ...}, get WAV bytes back.
    Network errors are retried with back-off; HTTP status errors are not.
    """

    def __init__(self,
                 url: Optional[str] = None,
                 timeout: Optional[float] = None,
                 max_retries: Optional[int] = None,
                 backoff_factor: Optional[float] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        config = Config.get_config()
        self.url = url or Config.url("tts")
        self.timeout = timeout if timeout is not None else config["http"]["timeout"]
        self.max_retries = max_retries if max_retries is not None else config["http"]["max_retries"]
        self.backoff_factor = (backoff_factor if backoff_factor is not None
                               else config["http"]["backoff_factor"])
        self._transport = transport

    async def _post_with_retries(self, url: str, **kwargs) -> httpx.Response:
        delay = self.backoff_factor
        for attempt in range(1, self.max_retries + 1):
            try:
                async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                    resp = await client.post(url, **kwargs)
                    resp.raise_for_status()
                    return resp
            except (httpx.ConnectError, httpx.ReadTimeout, httpx.RemoteProtocolError) as e:
                logger.warning(
                    "TTS request failed (attempt %d/%d) to %s: %s",
                    attempt, self.max_retries, url, e
                )
                if attempt == self.max_retries:
                    logger.error("Max retries reached for TTS at %s", url)
                    raise
                await asyncio.sleep(delay)
                delay *= 2
            except httpx.HTTPStatusError as e:
                # 4xx/5xx – won't succeed on retry
                logger.error("TTS service returned HTTP %d: %s", e.response.status_code, e)
                raise

    async def synthesize(self, text: str) -> bytes:
        """Return the provider's audio for `text`; raises SynthesisError."""
        payload = {"text": text}
        headers = {"Accept": "audio/wav"}
        logger.debug("Sending TTS payload to %s: %r", self.url, payload)
        try:
            resp = await self._post_with_retries(self.url, json=payload, headers=headers)
        except httpx.HTTPError as e:
            raise SynthesisError(f"TTS provider failed: {e}") from e
        if not resp.content:
            raise SynthesisError("TTS provider returned no audio")
        logger.info("TTS audio received (%d bytes)", len(resp.content))
        return resp.content
