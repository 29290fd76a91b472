"""Content sources.

A content source is one of a closed set of producer shapes:

- `FixedContent` wraps a byte string.
- `GeneratorContent` wraps a `generate(pos, length)` function that is pulled in
  bounded reads. It may return bytes, `None` for "no more data", or an awaitable
  of either.
- `DeferredContent` wraps a future that eventually yields any other shape.
- `PartContent` is a generator together with the length it will produce, as
  yielded by a parts generator for one part of a multipart upload.

Generators may be pulled again from position zero when an upload is retried, so
they must return the same bytes for the same position every time they are called.
"""

import asyncio
import inspect
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, TypeAlias

from haos3.clients.abstract import S3ConfigurationClientException, S3ContentShapeClientException

Chunk: TypeAlias = bytes | str | None
ChunkGenerator: TypeAlias = Callable[[int, int], Chunk | Awaitable[Chunk]]


@dataclass(frozen=True, slots=True)
class FixedContent:
    """A byte string known up front."""

    data: bytes


@dataclass(frozen=True, slots=True)
class GeneratorContent:
    """Content pulled from a generator function."""

    generate: ChunkGenerator


@dataclass(frozen=True, slots=True)
class DeferredContent:
    """Content that becomes available once a future resolves."""

    future: asyncio.Future[Any]


@dataclass(frozen=True, slots=True)
class PartContent:
    """A generator function paired with the number of bytes it produces."""

    generate: ChunkGenerator
    length: int


ContentSource: TypeAlias = FixedContent | GeneratorContent | DeferredContent | PartContent
ResolvedContent: TypeAlias = FixedContent | GeneratorContent | PartContent


def to_bytes(chunk: bytes | bytearray | memoryview | str) -> bytes:
    """Convert a chunk to bytes, encoding strings as UTF-8."""
    if isinstance(chunk, str):
        return chunk.encode()
    return bytes(chunk)


def as_content(value: Any) -> ContentSource:
    """Coerce a caller supplied value into a content source.

    Args:
        value: Bytes or a string, a `generate(pos, length)` callable, an awaitable
            yielding either, or an existing content source.

    Returns:
        The matching content source.

    Raises:
        S3ContentShapeClientException: If the value has none of the supported shapes.

    """
    match value:
        case FixedContent() | GeneratorContent() | DeferredContent() | PartContent():
            return value
        case bytes() | bytearray() | memoryview() | str():
            return FixedContent(to_bytes(value))
        case _ if inspect.isawaitable(value):
            # A future can be awaited again when a retry re-drains the content.
            return DeferredContent(asyncio.ensure_future(value))
        case _ if callable(value):
            return GeneratorContent(value)
        case _:
            msg = f"Cannot stream content of type {type(value).__name__}"
            raise S3ContentShapeClientException(msg)


def as_part(value: Any) -> ContentSource | None:
    """Coerce one value produced by a parts generator.

    Args:
        value: `None` for the end of the parts, a `(generate, length)` pair,
            or anything `as_content` accepts.

    Returns:
        The part's content source, or `None` when there are no more parts.

    Raises:
        S3ContentShapeClientException: If the value has none of the supported shapes.

    """
    match value:
        case None:
            return None
        case (generate, int(length)) if callable(generate):
            return PartContent(generate, length)
        case tuple():
            msg = f"Cannot use a {len(value)}-tuple as a part, expected (generate, length)"
            raise S3ContentShapeClientException(msg)
        case _:
            return as_content(value)


async def resolve_content(source: ContentSource) -> ResolvedContent:
    """Await deferred content until a non-deferred source is reached.

    The future is shielded, so a waiter giving up leaves it for the next attempt.
    """
    while isinstance(source, DeferredContent):
        source = as_content(await asyncio.shield(source.future))
    return source


def declared_length(source: ResolvedContent, length: int | None) -> int:
    """Return the number of bytes an upload of `source` will send.

    Fixed content defaults to its own length. Generators cannot be measured, so
    they need an explicit length.

    Raises:
        S3ConfigurationClientException: If a generator was given without a length.

    """
    match source:
        case PartContent(length=part_length):
            return part_length
        case FixedContent(data=data):
            return len(data) if length is None else length
        case GeneratorContent():
            if length is None:
                msg = "Generator content needs an explicit length"
                raise S3ConfigurationClientException(msg)
            return length
