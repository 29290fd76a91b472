"""Single-part versus multipart upload planning."""

import inspect
import logging
from collections import deque
from collections.abc import Callable, Iterable, Iterator
from dataclasses import dataclass
from typing import Any

from haos3.clients.abstract import PartValue, S3ConfigurationClientException
from haos3.configs.s3 import MAX_PARTS
from haos3.content.sources import (
    ChunkGenerator,
    ContentSource,
    FixedContent,
    GeneratorContent,
    PartContent,
    ResolvedContent,
    as_content,
    as_part,
    declared_length,
    resolve_content,
)

logger = logging.getLogger(__name__)


class PartSequence:
    """The parts of an upload, pulled lazily one at a time.

    Parts that were pulled ahead to inspect the sequence can be pushed back, and are
    handed out again before anything new is pulled.
    """

    def __init__(self, gen_parts: Callable[[], PartValue] | Iterable[PartValue]) -> None:
        """Initialize the sequence.

        Args:
            gen_parts: A zero-argument callable returning the next part value, or
                `None` when there are no more parts, or an iterable of part values.

        """
        if callable(gen_parts):
            self._pull: Callable[[], PartValue] = gen_parts
        else:
            iterator = iter(gen_parts)
            self._pull = lambda: next(iterator, None)
        self._pending: deque[ContentSource] = deque()
        self._exhausted = False

    def push_back(self, *parts: ContentSource) -> None:
        """Put `parts` in front of the sequence, in the given order."""
        self._pending.extendleft(reversed(parts))

    async def next(self) -> ContentSource | None:
        """Return the next part, or None when the sequence is exhausted.

        Raises:
            S3ContentShapeClientException: If the generator produced an unusable value.

        """
        if self._pending:
            return self._pending.popleft()
        if self._exhausted:
            return None

        value = self._pull()
        if inspect.isawaitable(value):
            value = await value

        part = as_part(value)
        if part is None:
            self._exhausted = True
        return part


@dataclass(frozen=True)
class UploadPlan:
    """How a value is uploaded.

    Attributes:
        parts: The parts of a multipart upload, or None for a single PUT.
        content: The content of a single PUT.
        length: The declared length of a single PUT.

    """

    parts: PartSequence | None = None
    content: ResolvedContent | None = None
    length: int | None = None

    @property
    def multipart(self) -> bool:
        """Whether the value is uploaded in parts."""
        return self.parts is not None


def _rebase(generate: ChunkGenerator, offset: int) -> ChunkGenerator:
    def generate_window(pos: int, length: int) -> Any:
        return generate(offset + pos, length)

    return generate_window


def split_content(source: ResolvedContent, length: int, part_size: int) -> Iterator[ContentSource]:
    """Slice `source` into windows of `part_size` bytes covering `length` bytes.

    Generator windows call the original generator at their own offset, so each
    window's positions start at zero.
    """
    for offset in range(0, length, part_size):
        size = min(part_size, length - offset)
        match source:
            case FixedContent(data=data):
                yield FixedContent(data[offset : offset + size].ljust(size, b"\0"))
            case GeneratorContent(generate=generate) | PartContent(generate=generate):
                yield PartContent(_rebase(generate, offset), size)


class UploadPlanner:
    """Decide between a single PUT and a multipart upload."""

    def __init__(self, part_size: int) -> None:
        """Initialize the planner.

        Args:
            part_size: Values longer than this are split into parts of this size.

        """
        self._part_size = part_size

    async def plan(
        self,
        value: Any = None,
        value_length: int | None = None,
        gen_parts: Callable[[], PartValue] | Iterable[PartValue] | None = None,
    ) -> UploadPlan:
        """Plan the upload of `value` or of the parts produced by `gen_parts`.

        The first part is pulled and resolved, then the second one. Only when a
        second part exists is the upload done in parts, with both parts handed back
        to the sequence so nothing that was pulled is lost.

        Args:
            value: Content for the object, see `haos3.content.sources.as_content`.
            value_length: Declared length of `value`. Required for generators.
            gen_parts: Producer of parts, as an alternative to `value`.

        Returns:
            The plan.

        Raises:
            S3ConfigurationClientException: If both or neither of `value` and
                `gen_parts` are given, or the value needs more than `MAX_PARTS` parts.

        """
        if (value is None) == (gen_parts is None):
            msg = "Exactly one of value and gen_parts must be given"
            raise S3ConfigurationClientException(msg)

        if gen_parts is None:
            source = await resolve_content(as_content(value))
            length = declared_length(source, value_length)

            if length > self._part_size * MAX_PARTS:
                msg = f"Content of {length} bytes needs more than {MAX_PARTS} parts of {self._part_size} bytes"
                raise S3ConfigurationClientException(msg)
            if length <= self._part_size:
                return UploadPlan(content=source, length=length)

            logger.debug("Splitting %d bytes into parts of %d bytes", length, self._part_size)
            gen_parts = split_content(source, length, self._part_size)

        parts = PartSequence(gen_parts)

        first = await parts.next()
        if first is None:
            return UploadPlan(content=FixedContent(b""), length=0)
        first = await resolve_content(first)

        second = await parts.next()
        if second is None:
            return UploadPlan(content=first, length=declared_length(first, value_length))

        parts.push_back(first, second)
        return UploadPlan(parts=parts)
