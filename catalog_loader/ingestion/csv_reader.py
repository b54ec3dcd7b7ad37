"""
CSV Stream Reader
Lazily yields header-mapped rows from a binary stream.
"""

import csv
import io
import logging
from dataclasses import dataclass
from typing import BinaryIO, Dict, Iterator, List, Optional

import chardet

from catalog_loader.errors import EmptyCsvError, ImportFailedError

logger = logging.getLogger(__name__)

ENCODING_SAMPLE_SIZE = 10000  # First 10KB
MAX_FIELD_SIZE = 16 * 1024 * 1024  # 16MB; longer values are rejected row by row


def detect_encoding(sample: bytes) -> str:
    """
    Detect CSV encoding using chardet.

    ASCII and UTF-8 are read as utf-8-sig so a byte order mark never
    ends up in the first header name.
    """
    if not sample:
        return "utf-8-sig"

    result = chardet.detect(sample)
    encoding = result["encoding"]
    confidence = result["confidence"] or 0.0

    if not encoding:
        return "utf-8-sig"

    # ASCII is often a false positive for UTF-8 files
    if encoding.lower() in ("ascii", "utf-8", "utf-8-sig"):
        return "utf-8-sig"

    logger.info(f"Detected encoding: {encoding} (confidence: {confidence:.2%})")
    return encoding


def normalize_headers(headers: List[str]) -> List[str]:
    return [h.strip().lower() for h in headers]


@dataclass
class CsvRow:
    """
    One CSV record.

    `number` counts the header as row 1. `data` is None when the record
    could not be mapped onto the header; `error` says why.
    """

    number: int
    data: Optional[Dict[str, str]]
    error: Optional[str] = None

    @property
    def is_malformed(self) -> bool:
        return self.data is None


class _ReplayStream(io.RawIOBase):
    """Serves an already-read prefix, then the rest of the underlying stream."""

    def __init__(self, head: bytes, tail: BinaryIO):
        self._head = head
        self._tail = tail

    def readable(self) -> bool:
        return True

    def readinto(self, buffer) -> int:
        if self._head:
            n = min(len(buffer), len(self._head))
            buffer[:n] = self._head[:n]
            self._head = self._head[n:]
            return n

        data = self._tail.read(len(buffer))
        if not data:
            return 0
        n = len(data)
        buffer[:n] = data
        return n


class CsvStreamReader:
    """
    Single-pass reader over a comma-delimited CSV with a mandatory header.

    The source stream is read incrementally; it is not closed by the reader.
    A record the csv module cannot parse (an oversized field, for instance)
    is yielded as a malformed row and reading continues with the next line.
    """

    def __init__(
        self,
        stream: BinaryIO,
        encoding: Optional[str] = None,
        delimiter: str = ",",
        field_size_limit: int = MAX_FIELD_SIZE,
    ):
        self.stream = stream
        self.encoding = encoding
        self.delimiter = delimiter
        self.field_size_limit = field_size_limit
        self.headers: Optional[List[str]] = None
        self._consumed = False

    def __iter__(self) -> Iterator[CsvRow]:
        if self._consumed:
            raise RuntimeError("CSV stream has already been consumed")
        self._consumed = True
        return self._rows()

    def _rows(self) -> Iterator[CsvRow]:
        head = b""
        encoding = self.encoding
        if encoding is None:
            head = self.stream.read(ENCODING_SAMPLE_SIZE)
            encoding = detect_encoding(head)
        self.encoding = encoding

        text = io.TextIOWrapper(
            io.BufferedReader(_ReplayStream(head, self.stream)),
            encoding=encoding,
            errors="replace",
            newline="",
        )
        # The limit is process-wide in the csv module; set it for this read
        csv.field_size_limit(self.field_size_limit)
        reader = csv.reader(text, delimiter=self.delimiter)

        try:
            header = next(reader)
        except StopIteration:
            raise EmptyCsvError() from None
        except csv.Error as e:
            raise ImportFailedError(f"Unreadable CSV header: {e}") from e

        self.headers = normalize_headers(header)
        if not any(self.headers):
            raise EmptyCsvError()

        width = len(self.headers)
        number = 1
        while True:
            number += 1
            try:
                values = next(reader)
            except StopIteration:
                return
            except csv.Error as e:
                logger.warning(f"Skipping unparsable CSV row {number}: {e}")
                yield CsvRow(number=number, data=None, error=f"Malformed row: {e}")
                continue

            if not values:
                continue  # blank line

            if len(values) != width:
                yield CsvRow(
                    number=number,
                    data=None,
                    error=f"Row has {len(values)} columns but header has {width}",
                )
                continue

            yield CsvRow(number=number, data=dict(zip(self.headers, values)))
