"""Streaming chat completions: SSE frame reassembly, incremental events, cancellation."""
import asyncio
import codecs
import json
import logging
from typing import AsyncIterator, Awaitable, Callable, Optional

import httpx

from config import Settings, get_settings
from services.errors import StreamParseError, UpstreamStreamError
from services.models import CompleteEvent, ContentEvent, ErrorEvent, StreamEvent

logger = logging.getLogger(__name__)

DATA_PREFIX = "data: "
DONE_MARKER = "[DONE]"

Finalizer = Callable[[str], Awaitable[CompleteEvent]]


def _frame_payload(line: str) -> Optional[str]:
    line = line.rstrip("\r")
    if line.startswith(DATA_PREFIX):
        return line[len(DATA_PREFIX):]
    return None


class SSEFrameBuffer:
    """
    Reassembles ``data:`` frames from arbitrary byte chunks.

    Bytes are decoded incrementally, so a multi-byte character split across
    two chunks is held back until it is complete. An unterminated trailing
    line stays buffered until the next ``feed`` or ``flush``.
    """

    def __init__(self):
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""

    def feed(self, chunk: bytes) -> list[str]:
        """Add a chunk; return payloads of every line it completed."""
        self._buffer += self._decoder.decode(chunk)
        lines = self._buffer.split("\n")
        self._buffer = lines.pop()

        payloads = []
        for line in lines:
            payload = _frame_payload(line)
            if payload is not None:
                payloads.append(payload)
        return payloads

    def flush(self) -> list[str]:
        """Payload of the final unterminated line, if it is a frame."""
        self._buffer += self._decoder.decode(b"", final=True)
        line, self._buffer = self._buffer, ""
        payload = _frame_payload(line)
        return [payload] if payload is not None else []


def parse_delta(payload: str) -> str:
    """
    Text delta carried by one frame payload.

    Returns "" for the end marker and for frames without content (role
    announcements, finish reasons). Raises StreamParseError on bad JSON.
    """
    if payload.strip() == DONE_MARKER:
        return ""

    try:
        data = json.loads(payload)
    except json.JSONDecodeError as e:
        raise StreamParseError(f"Malformed stream frame: {e}")

    try:
        return data["choices"][0]["delta"].get("content") or ""
    except (KeyError, IndexError, TypeError, AttributeError):
        return ""


class StreamOrchestrator:
    """Drives one streaming generation request and re-emits it as events."""

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self.client = client
        self.full_text = ""
        self.cancelled = False

    def _request_body(self, messages: list[dict]) -> dict:
        return {
            "model": self.settings.chat_model,
            "messages": messages,
            "max_tokens": self.settings.response_max_tokens,
            "temperature": self.settings.generation_temperature,
            "stream": True,
            "presence_penalty": 0.1,
            "frequency_penalty": 0.1,
        }

    async def _read_deltas(
        self,
        response: httpx.Response,
        cancel_event: asyncio.Event,
    ) -> AsyncIterator[str]:
        frames = SSEFrameBuffer()

        async for chunk in response.aiter_bytes():
            if cancel_event.is_set():
                return
            for payload in frames.feed(chunk):
                if cancel_event.is_set():
                    return
                delta = self._safe_delta(payload)
                if delta:
                    yield delta

        if cancel_event.is_set():
            return
        for payload in frames.flush():
            delta = self._safe_delta(payload)
            if delta:
                yield delta

    @staticmethod
    def _safe_delta(payload: str) -> str:
        try:
            return parse_delta(payload)
        except StreamParseError as e:
            logger.error(f"Error parsing stream chunk: {e.message}")
            return ""

    async def stream(
        self,
        messages: list[dict],
        finalize: Finalizer,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> AsyncIterator[StreamEvent]:
        """
        Yield a ContentEvent per delta, then exactly one terminal event.

        ``finalize`` receives the full text after a clean end of stream and
        builds the CompleteEvent. When ``cancel_event`` is set the connection
        is closed at the next read, nothing else is yielded and ``finalize``
        is never called.
        """
        cancel_event = cancel_event or asyncio.Event()
        client = self.client or httpx.AsyncClient(
            timeout=httpx.Timeout(self.settings.api_timeout_seconds)
        )
        headers = {
            "Authorization": f"Bearer {self.settings.openai_api_key}",
            "Content-Type": "application/json",
        }

        try:
            async with client.stream(
                "POST",
                f"{self.settings.openai_base_url}/chat/completions",
                headers=headers,
                json=self._request_body(messages),
            ) as response:
                if response.status_code != 200:
                    raise UpstreamStreamError(f"OpenAI API error: {response.status_code}")

                async for delta in self._read_deltas(response, cancel_event):
                    self.full_text += delta
                    yield ContentEvent(content=delta, full_content=self.full_text)

        except UpstreamStreamError as e:
            logger.error(f"Stream error: {e.message}")
            yield ErrorEvent(error=e.message)
            return
        except httpx.HTTPError as e:
            logger.error(f"Stream error: {e}")
            yield ErrorEvent(error=f"Generation stream failed: {e}")
            return
        finally:
            if self.client is None:
                await client.aclose()

        if cancel_event.is_set():
            self.cancelled = True
            logger.info(f"Stream cancelled after {len(self.full_text)} chars; response discarded")
            self.full_text = ""
            return

        try:
            complete = await finalize(self.full_text)
        except Exception as e:
            logger.error(f"Failed to finalize response: {e}")
            yield ErrorEvent(error=getattr(e, "message", None) or "Failed to finalize response")
            return

        yield complete
