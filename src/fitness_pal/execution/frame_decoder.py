"""Frame decoding for generation streams.

The backend writes newline-delimited records, each either bare JSON or
``data: `` followed by JSON. Network chunks carry no alignment to record
boundaries, so the decoder keeps the unterminated tail of every chunk and
prepends it to the next one before splitting again.

The decoder knows nothing about frame kinds. It only yields parsed JSON
values; interpreting them is the event dispatcher's job.
"""

import codecs
import json
from typing import Any, AsyncIterable, AsyncIterator, Iterable, Iterator, List, Union

from fitness_pal.utils.logging import get_logger

logger = get_logger(__name__)

Chunk = Union[str, bytes]

DONE_FRAME = {"type": "done"}


class FrameDecoder:
    """Reassembles JSON records from arbitrarily split text chunks."""

    def __init__(self, data_prefix: str = "data: ", done_sentinel: str = "[DONE]"):
        """Initialize the decoder.

        Args:
            data_prefix: Marker stripped from the start of a record.
            done_sentinel: Bare record that stands for a ``done`` frame.
        """
        self.data_prefix = data_prefix
        self.done_sentinel = done_sentinel
        self._buffer = ""
        self._byte_decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self.records_decoded = 0
        self.records_discarded = 0

    @property
    def pending(self) -> str:
        """The carried-over, not yet terminated fragment."""
        return self._buffer

    def feed(self, chunk: Chunk) -> List[Any]:
        """Consume one chunk and return every record it completes.

        Args:
            chunk: Text, or raw bytes decoded incrementally as UTF-8.

        Returns:
            Parsed JSON values in arrival order.
        """
        if isinstance(chunk, bytes):
            chunk = self._byte_decoder.decode(chunk)
        if not chunk:
            return []

        lines = (self._buffer + chunk).split("\n")
        self._buffer = lines.pop()

        frames = []
        for line in lines:
            value = self._decode_record(line)
            if value is not None:
                frames.append(value)
        return frames

    def flush(self) -> List[Any]:
        """Decode whatever is left once the body has ended."""
        tail = self._byte_decoder.decode(b"", final=True)
        remaining = self._buffer + tail
        self._buffer = ""
        value = self._decode_record(remaining)
        return [value] if value is not None else []

    def reset(self) -> None:
        self._buffer = ""
        self._byte_decoder.reset()

    def iter_frames(self, chunks: Iterable[Chunk]) -> Iterator[Any]:
        """Decode a complete iterable of chunks, flushing at the end."""
        for chunk in chunks:
            yield from self.feed(chunk)
        yield from self.flush()

    async def aiter_frames(self, chunks: AsyncIterable[Chunk]) -> AsyncIterator[Any]:
        """Async counterpart of ``iter_frames``."""
        async for chunk in chunks:
            for frame in self.feed(chunk):
                yield frame
        for frame in self.flush():
            yield frame

    def _decode_record(self, line: str) -> Any:
        record = line.strip()
        if not record:
            return None

        if self.data_prefix:
            prefix = self.data_prefix.strip()
            if record.startswith(prefix):
                record = record[len(prefix):].strip()
                if not record:
                    return None

        if record == self.done_sentinel:
            self.records_decoded += 1
            return dict(DONE_FRAME)

        try:
            value = json.loads(record)
        except json.JSONDecodeError:
            self.records_discarded += 1
            logger.debug(f"Discarding non-JSON record: {record[:80]!r}")
            return None

        self.records_decoded += 1
        return value
