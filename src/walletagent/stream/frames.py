from __future__ import annotations

import codecs
import logging
from typing import AsyncIterator

logger = logging.getLogger(__name__)

FRAME_DELIMITER = "\n\n"


class FrameSplitter:
    """Turns a byte stream into complete protocol frames.

    Bytes are decoded incrementally so a multi-byte character split across
    two chunks is reassembled rather than replaced. Text is buffered until a
    blank line closes the frame; an unterminated tail is never emitted.

    Args:
        encoding: Text encoding of the stream body.
    """

    def __init__(self, encoding: str = "utf-8") -> None:
        self._decoder = codecs.getincrementaldecoder(encoding)(errors="replace")
        self._buffer: str = ""

    def feed(self, chunk: bytes) -> list[str]:
        """Add *chunk* and return every frame it completes, in order."""
        text = self._decoder.decode(chunk)
        if not text:
            return []
        # Normalised on the whole buffer so a CR/LF pair split across
        # chunks is still collapsed.
        self._buffer = (self._buffer + text).replace("\r\n", "\n")

        frames: list[str] = []
        while True:
            index = self._buffer.find(FRAME_DELIMITER)
            if index < 0:
                break
            frames.append(self._buffer[:index])
            self._buffer = self._buffer[index + len(FRAME_DELIMITER) :]
        return frames

    def discard(self) -> None:
        """Drop any partial frame and undecoded bytes."""
        if self._buffer:
            logger.debug("Discarding %d chars of partial frame", len(self._buffer))
        self._buffer = ""
        self._decoder.reset()

    @property
    def pending(self) -> bool:
        """True if a partial frame is buffered."""
        return bool(self._buffer)


async def iter_frames(
    chunks: AsyncIterator[bytes], splitter: FrameSplitter | None = None
) -> AsyncIterator[str]:
    """Yield complete frames from an async byte-chunk iterator."""
    splitter = splitter or FrameSplitter()
    try:
        async for chunk in chunks:
            for frame in splitter.feed(chunk):
                yield frame
    finally:
        splitter.discard()
