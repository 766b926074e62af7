"""Cancellable, single-consumer completion stream."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from types import TracebackType

from ai_orchestrator.domain.models import StreamChunk


class CompletionStream:
    """Async iterator over ``StreamChunk`` values ending with a ``done`` chunk.

    Not restartable.  ``aclose()`` (or leaving ``async with``) stops the
    producer and releases the underlying transport connection.
    """

    def __init__(self, source: AsyncGenerator[StreamChunk, None]) -> None:
        self._source = source
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def __aiter__(self) -> CompletionStream:
        return self

    async def __anext__(self) -> StreamChunk:
        if self._closed:
            raise StopAsyncIteration
        try:
            return await self._source.__anext__()
        except StopAsyncIteration:
            self._closed = True
            raise
        except BaseException:
            await self.aclose()
            raise

    async def aclose(self) -> None:
        if not self._closed:
            self._closed = True
        await self._source.aclose()

    async def __aenter__(self) -> CompletionStream:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    async def collect(self) -> str:
        """Drain the stream and return the concatenated text."""
        parts: list[str] = []
        async for chunk in self:
            if chunk.content:
                parts.append(chunk.content)
        return "".join(parts)
