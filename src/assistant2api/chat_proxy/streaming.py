"""Pseudo-streaming: replay a complete generation as paced SSE chunks.

The upstream returns the whole answer at once. :class:`PseudoStreamEmitter`
slices it into ``chat.completion.chunk`` frames and writes them to a sink at a
fixed cadence, followed by one ``finish_reason="stop"`` frame and the
``data: [DONE]`` sentinel.
"""

from __future__ import annotations

import asyncio
import enum
import json
import logging
import time
import uuid
from dataclasses import dataclass
from typing import Any, AsyncGenerator, Awaitable, Callable, Optional, Protocol

logger = logging.getLogger(__name__)

DONE_FRAME = b"data: [DONE]\n\n"


class SinkClosedError(ConnectionError):
    """Raised by a sink when its consumer has gone away."""


class FrameSink(Protocol):
    async def write(self, data: bytes) -> None: ...

    async def aclose(self) -> None: ...


class EmitOutcome(str, enum.Enum):
    COMPLETED = "completed"
    TRUNCATED = "truncated"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"


def new_completion_id() -> str:
    return f"chatcmpl-{uuid.uuid4()}"


def encode_frame(obj: dict[str, Any]) -> bytes:
    """Serialize one SSE ``data:`` frame.

    Compact separators and raw unicode keep the bytes identical to what a
    JavaScript ``JSON.stringify`` client-side implementation produces.
    """
    body = json.dumps(obj, ensure_ascii=False, separators=(",", ":"))
    return f"data: {body}\n\n".encode("utf-8")


@dataclass
class StreamSession:
    id: str
    created: int
    model: str
    text: str
    cursor: int = 0
    sent: int = 0  # characters accepted by the sink
    finished: bool = False

    @classmethod
    def start(
        cls,
        model: str,
        text: str,
        session_id: str | None = None,
        created: int | None = None,
    ) -> "StreamSession":
        return cls(
            id=session_id or new_completion_id(),
            created=int(time.time()) if created is None else created,
            model=model,
            text=text,
        )

    @property
    def remaining(self) -> int:
        return max(len(self.text) - self.cursor, 0)

    def next_slice(self, size: int) -> str | None:
        if self.cursor >= len(self.text):
            return None
        piece = self.text[self.cursor : self.cursor + size]
        self.cursor += size
        return piece

    def chunk(self, delta: dict[str, Any], finish_reason: str | None) -> dict[str, Any]:
        return {
            "id": self.id,
            "object": "chat.completion.chunk",
            "created": self.created,
            "model": self.model,
            "choices": [
                {"index": 0, "delta": delta, "finish_reason": finish_reason}
            ],
        }

    def delta_frame(self, content: str) -> bytes:
        return encode_frame(self.chunk({"content": content}, None))

    def final_frame(self) -> bytes:
        return encode_frame(self.chunk({}, "stop"))


class PseudoStreamEmitter:
    def __init__(
        self,
        chunk_size: int = 5,
        delay_ms: int = 20,
        max_duration_s: float | None = None,
        sleep: Callable[[float], Awaitable[Any]] | None = None,
    ):
        if isinstance(chunk_size, bool) or not isinstance(chunk_size, int) or chunk_size < 1:
            raise ValueError(f"chunk_size must be a positive integer, got {chunk_size!r}")
        if delay_ms < 0:
            raise ValueError(f"delay_ms must be non-negative, got {delay_ms!r}")
        self.chunk_size = chunk_size
        self.delay_ms = delay_ms
        self.max_duration_s = max_duration_s if max_duration_s else None
        self._sleep = sleep or asyncio.sleep

    async def _pump(self, session: StreamSession, sink: FrameSink) -> None:
        delay = self.delay_ms / 1000
        while True:
            piece = session.next_slice(self.chunk_size)
            if piece is None:
                break
            await sink.write(session.delta_frame(piece))
            session.sent += len(piece)
            await self._sleep(delay)
        await sink.write(session.final_frame())
        await sink.write(DONE_FRAME)
        session.finished = True

    async def emit(self, session: StreamSession, sink: FrameSink) -> EmitOutcome:
        """Write every frame of ``session`` to ``sink`` and release it.

        Sink failures and timer failures truncate the stream silently; the
        sink is closed on every path. Cancellation propagates after cleanup.
        """
        outcome = EmitOutcome.TRUNCATED
        try:
            if self.max_duration_s is None:
                await self._pump(session, sink)
            else:
                await asyncio.wait_for(
                    self._pump(session, sink), timeout=self.max_duration_s
                )
            outcome = EmitOutcome.COMPLETED
        except asyncio.TimeoutError:
            outcome = EmitOutcome.TIMED_OUT
            logger.warning(
                "[stream] %s exceeded %.1fs; truncated at %d/%d chars",
                session.id,
                self.max_duration_s,
                session.sent,
                len(session.text),
            )
        except ConnectionError as exc:
            logger.warning(
                "[stream] %s sink rejected write (%s); truncated at %d/%d chars",
                session.id,
                exc,
                session.sent,
                len(session.text),
            )
        except asyncio.CancelledError:
            logger.info("[stream] %s cancelled by client", session.id)
            raise
        except Exception:  # noqa: BLE001
            logger.exception("[stream] %s aborted by unexpected error", session.id)
        finally:
            await self._release(session, sink)
        return outcome

    @staticmethod
    async def _release(session: StreamSession, sink: FrameSink) -> None:
        try:
            await sink.aclose()
        except Exception:  # noqa: BLE001
            logger.debug("[stream] %s sink close failed", session.id, exc_info=True)


class QueueSink:
    """In-memory sink bridging the emitter task and a response body iterator."""

    _EOF = object()

    def __init__(self, maxsize: int = 64):
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self.closed = False

    async def write(self, data: bytes) -> None:
        if self.closed:
            raise SinkClosedError("stream consumer disconnected")
        await self._queue.put(data)

    async def aclose(self) -> None:
        if self.closed:
            return
        self.closed = True
        try:
            self._queue.put_nowait(self._EOF)
        except asyncio.QueueFull:
            # Reader is gone or lagging; it stops on ``closed`` once drained.
            pass

    def detach(self) -> None:
        """Mark the consumer side gone so further writes fail."""
        self.closed = True

    async def frames(self) -> AsyncGenerator[bytes, None]:
        while True:
            if self.closed and self._queue.empty():
                return
            item = await self._queue.get()
            if item is self._EOF:
                return
            yield item


async def stream_frames(
    emitter: PseudoStreamEmitter,
    session: StreamSession,
    on_finish: Optional[Callable[[EmitOutcome], None]] = None,
) -> AsyncGenerator[bytes, None]:
    """Run the emitter in its own task and relay its frames.

    Closing this generator early (client disconnect) cancels and joins the
    producer task.
    """
    sink = QueueSink()
    task = asyncio.create_task(emitter.emit(session, sink))
    drained = False
    try:
        async for frame in sink.frames():
            yield frame
        drained = True
    finally:
        sink.detach()
        if not drained and not task.done():
            task.cancel()
        try:
            outcome = await task
        except asyncio.CancelledError:
            outcome = EmitOutcome.CANCELLED
        if on_finish is not None:
            on_finish(outcome)
