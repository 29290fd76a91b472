"""Checksumming request body stream."""

import hashlib
import inspect
import logging
from collections.abc import AsyncIterator, Callable

from haos3.content.sources import (
    Chunk,
    ChunkGenerator,
    ContentSource,
    FixedContent,
    GeneratorContent,
    PartContent,
    resolve_content,
    to_bytes,
)

logger = logging.getLogger(__name__)


class ChecksummingStream:
    """Drain a content source into exactly `length` bytes while computing their MD5.

    The stream is an async iterable of byte chunks, so it can be handed to httpx as
    a request body. Generators are pulled in reads of at most `read_size` bytes.
    A source that produces less than `length` bytes is padded with zero bytes, one
    that produces more is cut at `length`. The digest covers exactly the bytes that
    were emitted, padding included.

    A stream is drained once. Retries create a new stream over the same source.
    """

    def __init__(
        self,
        source: ContentSource,
        length: int,
        read_size: int,
        on_write: Callable[[int], None] | None = None,
    ) -> None:
        """Initialize the stream.

        Args:
            source: The content to send.
            length: The exact number of bytes to emit.
            read_size: The largest read to request from a generator.
            on_write: Called with the new position after every emitted chunk.

        """
        self._source = source
        self._length = length
        self._read_size = read_size
        self._on_write = on_write
        self._md5 = hashlib.md5()  # noqa: S324
        self._position = 0

    @property
    def length(self) -> int:
        """Number of bytes the stream emits in total."""
        return self._length

    @property
    def position(self) -> int:
        """Number of bytes emitted so far."""
        return self._position

    def hexdigest(self) -> str:
        """Lowercase hex MD5 of the bytes emitted so far."""
        return self._md5.hexdigest()

    async def __aiter__(self) -> AsyncIterator[bytes]:
        """Yield the body chunks."""
        source = await resolve_content(self._source)

        match source:
            case FixedContent(data=data):
                chunk = self._emit(data, pad=True)
                if chunk:
                    yield chunk
            case GeneratorContent(generate=generate) | PartContent(generate=generate):
                while self._position < self._length:
                    data = await self._pull(generate)
                    if not data:
                        yield self._emit(b"", pad=True)
                        return
                    yield self._emit(data, pad=False)

    async def _pull(self, generate: ChunkGenerator) -> bytes | None:
        size = min(self._length - self._position, self._read_size)
        chunk: Chunk = await _settle(generate(self._position, size))
        if chunk is None:
            logger.debug("Content generator ran dry at %d of %d bytes", self._position, self._length)
            return None
        return to_bytes(chunk)

    def _emit(self, data: bytes, *, pad: bool) -> bytes:
        remaining = self._length - self._position
        if len(data) > remaining:
            data = data[:remaining]
        elif pad and len(data) < remaining:
            data += b"\0" * (remaining - len(data))

        self._md5.update(data)
        self._position += len(data)

        if self._on_write is not None:
            self._on_write(self._position)

        return data


async def _settle(value: object) -> Chunk:
    while inspect.isawaitable(value):
        value = await value
    return value  # type: ignore[return-value]
