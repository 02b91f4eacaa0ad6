"""JSONL (newline-delimited JSON) reading and writing.

JsonlReader decodes one item per newline-terminated line from a binary stream.
It keeps partial lines buffered across reads, so it can be called repeatedly
on a file that is still being appended to:

    reader = JsonlReader(open("records.jsonl", "rb"))
    while True:
        record = reader.read_item(Record.from_dict)
        if record is None:
            time.sleep(0.5)  # no complete line yet, retry later
            continue
        ...
"""

from __future__ import annotations

import json
from typing import IO, Any, Callable, Iterator, TypeVar

from jtsvis.record import Record

T = TypeVar("T")


class DecodeError(ValueError):
    """A complete line in the stream could not be decoded.

    Attributes:
        line: The raw bytes of the offending line.
    """

    def __init__(self, message: str, line: bytes):
        super().__init__(message)
        self.line = line


class JsonlReader:
    """Incremental reader yielding one decoded JSON item per line.

    Bytes are read into an internal buffer whose unconsumed region is
    ``[offset, end)``. The buffer doubles when full, and bytes already known
    not to contain a newline are never scanned twice.
    """

    INITIAL_CAPACITY = 4096

    def __init__(self, stream: IO[bytes], capacity: int = INITIAL_CAPACITY):
        """Initialize the reader.

        Args:
            stream: Binary stream supporting ``readinto``.
            capacity: Initial buffer size in bytes.
        """
        if capacity <= 0:
            raise ValueError(f"capacity must be positive, got {capacity}")
        self._stream = stream
        self._buf = bytearray(capacity)
        self._offset = 0
        self._end = 0

    @property
    def pending_bytes(self) -> int:
        """Number of buffered bytes belonging to an incomplete line."""
        return self._end - self._offset

    def read_item(self, decode: Callable[[Any], T] | None = None) -> T | Any | None:
        """Read the next complete line and decode it.

        Args:
            decode: Optional callable applied to the decoded JSON value
                (e.g. ``Record.from_dict``).

        Returns:
            The decoded item, or None if the stream has no complete line
            available yet. Partial lines stay buffered for the next call.

        Raises:
            DecodeError: If a complete line is not valid JSON or is
                rejected by ``decode``.
        """
        # A region starting at 0 was compacted and already holds no newline
        if self._offset != 0:
            newline = self._buf.find(b"\n", self._offset, self._end)
            if newline >= 0:
                return self._take_line(newline, decode)
            self._compact()

        while True:
            if self._end == len(self._buf):
                self._buf.extend(bytes(len(self._buf)))

            with memoryview(self._buf) as view:
                read_size = self._stream.readinto(view[self._end:])
            # Non-blocking streams return None when nothing is available
            if not read_size:
                return None

            scan_from = self._end
            self._end += read_size

            newline = self._buf.find(b"\n", scan_from, self._end)
            if newline >= 0:
                return self._take_line(newline, decode)

    def iter_items(self, decode: Callable[[Any], T] | None = None) -> Iterator[T | Any]:
        """Yield items until no complete line is available."""
        while True:
            item = self.read_item(decode)
            if item is None:
                return
            yield item

    def _compact(self) -> None:
        """Move the unconsumed region to the start of the buffer."""
        self._buf[: self._end - self._offset] = self._buf[self._offset : self._end]
        self._end -= self._offset
        self._offset = 0

    def _take_line(self, newline: int, decode: Callable[[Any], T] | None) -> T | Any:
        line = bytes(self._buf[self._offset : newline])
        self._offset = newline + 1

        try:
            value = json.loads(line)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise DecodeError(f"Invalid JSON line: {e}", line) from e

        if decode is None:
            return value

        try:
            return decode(value)
        except (ValueError, TypeError, KeyError) as e:
            raise DecodeError(f"Invalid item: {e}", line) from e


class JsonlWriter:
    """Writes records to a text stream, one JSON object per line.

    Each line is written with its terminator in a single call and flushed,
    so a concurrent tailing reader never sees a torn line followed by the
    start of the next one.
    """

    def __init__(self, stream: IO[str]):
        self.stream = stream

    def write(self, record: Record) -> None:
        self.stream.write(record.to_json() + "\n")
        self.stream.flush()
