"""Incremental reader for large JSON-array permit exports.

The export is one root-level JSON array, often hundreds of megabytes. The
reader pulls fixed-size chunks from the file and decodes one array element
at a time, so memory stays bounded by the chunk size plus the largest
single element, never by the file size.

Batching is pull-based: iter_batches() is a generator, so while a consumer
is working on a batch the reader is suspended and reads nothing further.
"""

from __future__ import annotations

import json
import logging
import os
from contextlib import closing
from typing import Any, Callable, Iterator, List, Optional, TextIO, Union

from permit_sync.config import get_settings

logger = logging.getLogger("permit_sync.ingest")

_WHITESPACE = " \t\n\r"
_NUMBER_CHARS = frozenset("0123456789.eE+-")

PathLike = Union[str, "os.PathLike[str]"]


def _reject_constant(name: str) -> Any:
    raise ValueError(f"invalid JSON constant {name!r}")


class _ArrayReader:
    def __init__(self, stream: TextIO, chunk_chars: int, max_record_chars: int):
        self._stream = stream
        self._chunk_chars = max(1, int(chunk_chars))
        self._max_record_chars = max(1, int(max_record_chars))
        self._decoder = json.JSONDecoder(parse_constant=_reject_constant)
        self._buf = ""
        self._pos = 0
        self._base = 0  # absolute offset of _buf[0]
        self._eof = False

    @property
    def offset(self) -> int:
        return self._base + self._pos

    def _fill(self) -> bool:
        if self._eof:
            return False
        chunk = self._stream.read(self._chunk_chars)
        if not chunk:
            self._eof = True
            return False
        if self._pos:
            self._base += self._pos
            self._buf = self._buf[self._pos :] + chunk
            self._pos = 0
        else:
            self._buf += chunk
        return True

    def peek(self) -> str:
        """Next non-whitespace character, or '' at end of input."""

        while True:
            buf = self._buf
            pos = self._pos
            while pos < len(buf) and buf[pos] in _WHITESPACE:
                pos += 1
            self._pos = pos
            if pos < len(buf):
                return buf[pos]
            if not self._fill():
                return ""

    def advance(self) -> None:
        self._pos += 1

    def _check_record_size(self) -> None:
        if len(self._buf) - self._pos > self._max_record_chars:
            raise ValueError(
                f"array element at offset {self.offset} exceeds {self._max_record_chars} characters"
            )

    def decode(self) -> Any:
        while True:
            try:
                value, end = self._decoder.raw_decode(self._buf, self._pos)
            except json.JSONDecodeError:
                # Either malformed or cut off at the chunk boundary; only
                # end of input tells the two apart.
                self._check_record_size()
                if self._fill():
                    continue
                raise
            # A number cut at the buffer edge decodes as a shorter number
            # ("123." gives 123), so only accept it once a delimiter follows.
            tail = end
            while tail < len(self._buf) and self._buf[tail] in _NUMBER_CHARS:
                tail += 1
            if tail == len(self._buf):
                self._check_record_size()
                if self._fill():
                    continue
            self._pos = end
            return value


def iter_records_from_stream(
    stream: TextIO,
    *,
    chunk_chars: Optional[int] = None,
    max_record_chars: Optional[int] = None,
) -> Iterator[Any]:
    """Yield the elements of a root-level JSON array one at a time.

    Raises ValueError as soon as the document is found to be malformed:
    empty input, a non-array root, invalid syntax or trailing data.
    """

    settings = get_settings()
    reader = _ArrayReader(
        stream,
        chunk_chars or settings.read_chunk_chars,
        max_record_chars or settings.max_record_chars,
    )

    ch = reader.peek()
    if ch == "":
        raise ValueError("empty document: expected a JSON array")
    if ch != "[":
        raise ValueError(f"root element is not a JSON array (found {ch!r})")
    reader.advance()

    ch = reader.peek()
    if ch == "]":
        reader.advance()
    else:
        while True:
            if ch == "":
                raise ValueError("unexpected end of document inside JSON array")
            if ch == "]":
                raise ValueError(f"trailing comma in JSON array at offset {reader.offset}")
            yield reader.decode()
            ch = reader.peek()
            if ch == ",":
                reader.advance()
                ch = reader.peek()
                continue
            if ch == "]":
                reader.advance()
                break
            if ch == "":
                raise ValueError("unexpected end of document inside JSON array")
            raise ValueError(f"expected ',' or ']' at offset {reader.offset}, found {ch!r}")

    if reader.peek() != "":
        raise ValueError(f"trailing data after JSON array at offset {reader.offset}")


def iter_records(path: PathLike, **kwargs: Any) -> Iterator[Any]:
    # utf-8-sig tolerates a leading BOM, which some portal exports include.
    with open(path, "r", encoding="utf-8-sig") as handle:
        yield from iter_records_from_stream(handle, **kwargs)


def iter_batches(records: Iterator[Any], batch_size: int) -> Iterator[List[Any]]:
    """Group records into lists of batch_size; the last one may be shorter.

    No empty batch is ever produced.
    """

    if int(batch_size) < 1:
        raise ValueError("batch_size must be >= 1")
    batch: List[Any] = []
    for record in records:
        batch.append(record)
        if len(batch) >= batch_size:
            yield batch
            batch = []
    if batch:
        yield batch


def ingest(
    path: PathLike,
    batch_size: int,
    on_batch: Callable[[List[Any]], None],
    **kwargs: Any,
) -> int:
    """Stream path through on_batch in batches; return the element count.

    on_batch runs to completion before another element is read. Anything it
    raises stops the stream and propagates unchanged.
    """

    total = 0
    batches = 0
    with closing(iter_records(path, **kwargs)) as records:
        for batch in iter_batches(records, batch_size):
            batches += 1
            total += len(batch)
            on_batch(batch)
            logger.debug("batch %d handed off (%d records, %d total)", batches, len(batch), total)
    return total
