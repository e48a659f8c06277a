"""Line-oriented CSV output for accepted readings."""

from __future__ import annotations

import logging
import sys
from typing import Optional, Protocol, TextIO

from .reading import CSV_HEADER, Reading

logger = logging.getLogger(__name__)


class Emitter(Protocol):
    """Anything that accepts validated readings."""

    def emit(self, reading: Reading) -> None: ...


class CsvEmitter:
    """Writes ``time,spo2,heartrate`` rows to a text stream.

    Every line is flushed immediately so downstream pipes see readings as
    they arrive rather than when the stdio buffer fills.
    """

    def __init__(self, stream: Optional[TextIO] = None) -> None:
        self._stream = stream if stream is not None else sys.stdout
        self._header_written = False
        self.count = 0

    def write_header(self) -> None:
        if self._header_written:
            return
        logger.info("CSV header: %s", CSV_HEADER)
        self._write(CSV_HEADER)
        self._header_written = True

    def emit(self, reading: Reading) -> None:
        line = reading.to_csv()
        logger.debug("CSV output: %s", line)
        self._write(line)
        self.count += 1

    def _write(self, line: str) -> None:
        self._stream.write(line + "\n")
        self._stream.flush()
