"""Streaming bridge: provider text -> server-sent event frames.

Frame grammar::

    data: {"content": "<chunk>"}\\n\\n      zero or more, in text order
    data: {"type": ..., ...}\\n\\n          optional trailer events
    data: [DONE]\\n\\n                     on success

or exactly one ``data: {"error": "<message>"}\\n\\n`` and nothing after it.
"""

import asyncio
import json
import logging
from collections.abc import AsyncIterator, Awaitable, Callable

from cardwise.errors import CardWiseError, ProviderError
from cardwise.services.providers.base import RawProviderResult, ResultShape

logger = logging.getLogger(__name__)

DONE_FRAME = "data: [DONE]\n\n"
EMPTY_RESPONSE_MESSAGE = "The AI service returned an empty response. Please try again."
STREAM_ERROR_MESSAGE = "Stream error occurred. Please try again."

DisconnectCheck = Callable[[], Awaitable[bool]]
TrailerFactory = Callable[[str], Awaitable[list[dict]]]


def sse_frame(payload: dict | str) -> str:
    body = payload if isinstance(payload, str) else json.dumps(payload, ensure_ascii=False)
    return f"data: {body}\n\n"


def chunk_text(text: str, size: int = 50) -> list[str]:
    if size <= 0:
        raise ValueError("chunk size must be positive")
    return [text[i:i + size] for i in range(0, len(text), size)]


async def _whole_text_chunks(text: str, size: int, delay: float) -> AsyncIterator[str]:
    for i, chunk in enumerate(chunk_text(text, size)):
        if delay and i:
            await asyncio.sleep(delay)
        yield chunk


async def prime_stream(raw: RawProviderResult) -> RawProviderResult:
    """Read the first chunk of a native stream ahead of time.

    Vendors can report overload as an in-stream error after a 200, so this
    surfaces it before any frame is sent. The chunk is replayed to the bridge.
    Non-stream results pass through untouched.
    """
    if raw.shape is not ResultShape.STREAM or raw.chunks is None:
        return raw

    source = raw.chunks
    try:
        first = await anext(source)
    except StopAsyncIteration:
        first = None
    except Exception:
        await raw.aclose()
        raise

    async def replay() -> AsyncIterator[str]:
        if first is not None:
            yield first
        async for chunk in source:
            yield chunk

    closer = raw.closer

    async def close() -> None:
        await source.aclose()
        if closer is not None:
            await closer()

    raw.chunks = replay()
    raw.closer = close
    return raw


class StreamingBridge:
    def __init__(self, chunk_size: int = 50, chunk_delay: float = 0.0):
        self.chunk_size = chunk_size
        self.chunk_delay = chunk_delay

    async def frames(
        self,
        raw: RawProviderResult,
        *,
        is_disconnected: DisconnectCheck | None = None,
        trailer: TrailerFactory | None = None,
    ) -> AsyncIterator[str]:
        """Yield SSE frames for ``raw``.

        ``trailer`` receives the full text once it is complete and returns extra
        events to send before ``[DONE]``. The provider stream is always closed,
        including on client disconnect and cancellation.
        """
        if raw.shape is ResultShape.STREAM and raw.chunks is not None:
            source = raw.chunks
        else:
            source = _whole_text_chunks(raw.text, self.chunk_size, self.chunk_delay)

        parts: list[str] = []
        try:
            async for chunk in source:
                if is_disconnected is not None and await is_disconnected():
                    logger.info(f"{raw.provider.value}: client disconnected after {len(parts)} chunks")
                    return
                if not chunk:
                    continue
                parts.append(chunk)
                yield sse_frame({"content": chunk})

            text = "".join(parts)
            if not text.strip():
                logger.warning(f"{raw.provider.value}: empty response")
                yield sse_frame({"error": EMPTY_RESPONSE_MESSAGE})
                return

            if trailer is not None:
                for event in await trailer(text):
                    yield sse_frame(event)
            yield DONE_FRAME
        except ProviderError as e:
            logger.error(f"Stream failed: {e}")
            yield sse_frame({"error": e.message})
        except CardWiseError as e:
            yield sse_frame({"error": e.message})
        except Exception:
            logger.exception(f"{raw.provider.value}: unexpected stream error")
            yield sse_frame({"error": STREAM_ERROR_MESSAGE})
        finally:
            await raw.aclose()
            if source is not raw.chunks:
                await source.aclose()
