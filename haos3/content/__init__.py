"""Content sources and the checksumming body stream."""

from haos3.content.sources import (
    ContentSource,
    DeferredContent,
    FixedContent,
    GeneratorContent,
    PartContent,
    as_content,
    as_part,
)
from haos3.content.stream import ChecksummingStream

__all__ = [
    "ChecksummingStream",
    "ContentSource",
    "DeferredContent",
    "FixedContent",
    "GeneratorContent",
    "PartContent",
    "as_content",
    "as_part",
]
