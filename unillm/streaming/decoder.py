"""
unillm - Frame Decoder

Turns raw byte chunks from an HTTP response body into complete text frames.

Two framings are supported:
- SSE: frames separated by a blank line, payload carried in `data:` lines,
  `[DONE]` as the end-of-stream sentinel
- JSON: one frame per complete top-level JSON value (NDJSON, concatenated
  objects, or the elements of one streamed top-level array)

Chunk boundaries are arbitrary. Bytes are only decoded once a full UTF-8
code point is available and frames are only emitted once complete, so the
frames produced never depend on how the body was split.
"""

import codecs
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional

from ..config import get_settings
from ..core.errors import FrameDecodeError
from ..core.models import ProviderDialect

DONE_TOKEN = "[DONE]"

_LINE_END = re.compile(r"\r\n|\r|\n")
_STRUCTURAL = re.compile(r'[{}\[\]"]')
_STRING_SPECIAL = re.compile(r'["\\]')
_WHITESPACE = " \t\r\n"


@dataclass(frozen=True)
class Frame:
    """One self-contained unit of the wire protocol."""
    data: str
    event: Optional[str] = None
    sentinel: bool = False


class Utf8Decoder:
    """
    Incremental strict UTF-8 decoder that carries split code points over.

    On an invalid byte, `decode()` returns the text before it and keeps the
    failure in `error`; nothing is decoded after that.
    """

    def __init__(self):
        self._decoder = codecs.getincrementaldecoder("utf-8")("strict")
        self.error: Optional[FrameDecodeError] = None

    def decode(self, chunk: bytes) -> str:
        if self.error is not None:
            return ""
        try:
            return self._decoder.decode(chunk)
        except UnicodeDecodeError as exc:
            error = FrameDecodeError(f"Invalid UTF-8 in stream: {exc.reason}")
            error.__cause__ = exc
            self.error = error
            # exc.object holds the carried-over bytes plus this chunk
            return exc.object[:exc.start].decode("utf-8")

    def flush(self) -> str:
        if self.error is not None:
            raise self.error
        try:
            return self._decoder.decode(b"", final=True)
        except UnicodeDecodeError as exc:
            raise FrameDecodeError("Stream ended inside a multi-byte character") from exc

    @property
    def pending_bytes(self) -> int:
        return len(self._decoder.getstate()[0])


class FrameDecoder(ABC):
    """
    Base frame decoder.

    `feed()` accepts the next byte chunk and returns the frames it
    completed. When a chunk fails to decode partway through, the frames
    completed before the failure are still returned and the error is kept
    in `pending_error`; it is raised by the next `feed()` or `flush()`, or
    by this one when no frame came before it. `flush()` is called once when
    the byte source closes; it raises FrameDecodeError when bytes are left
    that cannot form a frame.
    """

    def __init__(self, max_frame_bytes: Optional[int] = None):
        self._utf8 = Utf8Decoder()
        self._max_frame_bytes = max_frame_bytes or get_settings().max_frame_bytes
        self._error: Optional[FrameDecodeError] = None

    @property
    def pending_error(self) -> Optional[FrameDecodeError]:
        return self._error

    def feed(self, chunk: bytes) -> List[Frame]:
        if self._error is not None:
            raise self._error

        frames: List[Frame] = []
        text = self._utf8.decode(chunk)
        try:
            if text:
                self._feed_text(text, frames)
        except FrameDecodeError as exc:
            self._error = exc
        if self._error is None:
            self._error = self._utf8.error

        if self._error is not None and not frames:
            raise self._error
        return frames

    def flush(self) -> List[Frame]:
        if self._error is not None:
            raise self._error
        frames: List[Frame] = []
        text = self._utf8.flush()
        if text:
            self._feed_text(text, frames)
        frames.extend(self._finish())
        return frames

    def _check_size(self, pending: int):
        # Character count; a lower bound on the pending byte count.
        if pending > self._max_frame_bytes:
            raise FrameDecodeError(
                f"Pending frame exceeds {self._max_frame_bytes} bytes"
            )

    @abstractmethod
    def _feed_text(self, text: str, frames: List[Frame]):
        """Append every frame `text` completes to `frames`."""

    @abstractmethod
    def _finish(self) -> List[Frame]:
        ...


class SSEFrameDecoder(FrameDecoder):
    """Server-Sent Events framing."""

    def __init__(self, max_frame_bytes: Optional[int] = None):
        super().__init__(max_frame_bytes)
        self._buffer = ""
        self._data_lines: List[str] = []
        self._data_size = 0
        self._event: Optional[str] = None

    def _feed_text(self, text: str, frames: List[Frame]):
        buf = self._buffer + text
        start = 0

        while True:
            match = _LINE_END.search(buf, start)
            if match is None:
                break
            # A trailing "\r" may be the first half of "\r\n".
            if match.group() == "\r" and match.end() == len(buf):
                break
            frame = self._process_line(buf[start:match.start()])
            start = match.end()
            if frame is not None:
                frames.append(frame)

        self._buffer = buf[start:]
        self._check_size(len(self._buffer) + self._data_size)

    def _process_line(self, line: str) -> Optional[Frame]:
        if line == "":
            return self._dispatch()
        if line.startswith(":"):
            return None

        name, sep, value = line.partition(":")
        if sep and value.startswith(" "):
            value = value[1:]

        if name == "data":
            self._data_lines.append(value)
            self._data_size += len(value) + 1
        elif name == "event":
            self._event = value
        # id, retry and unknown fields carry nothing we use
        return None

    def _dispatch(self) -> Optional[Frame]:
        event = self._event
        self._event = None
        if not self._data_lines:
            return None

        data = "\n".join(self._data_lines)
        self._data_lines = []
        self._data_size = 0

        if data.strip() == DONE_TOKEN:
            return Frame(data=DONE_TOKEN, event=event, sentinel=True)
        return Frame(data=data, event=event)

    def _finish(self) -> List[Frame]:
        rest = self._buffer
        self._buffer = ""
        if rest.endswith("\r"):
            rest = rest[:-1]
            frame = self._process_line(rest)
            if frame is not None:
                return [frame]
            rest = ""

        if rest.strip() and not rest.startswith(":"):
            self._process_line(rest)

        if not self._data_lines:
            return []

        pending = "\n".join(self._data_lines)
        if pending.strip() == DONE_TOKEN:
            self._data_lines = []
            return [Frame(data=DONE_TOKEN, event=self._event, sentinel=True)]

        raise FrameDecodeError("Stream ended with an unterminated SSE frame")


class JSONFrameDecoder(FrameDecoder):
    """
    One frame per top-level JSON value.

    With `unwrap_array=True` the structural `[`, `,` and `]` of a single
    streamed top-level array are skipped and each element is a frame.
    """

    def __init__(self, unwrap_array: bool = False, max_frame_bytes: Optional[int] = None):
        super().__init__(max_frame_bytes)
        self.unwrap_array = unwrap_array
        self._buffer = ""
        self._pos = 0
        self._start: Optional[int] = None
        self._depth = 0
        self._in_string = False
        self._escape = False

    def _feed_text(self, text: str, frames: List[Frame]):
        buf = self._buffer + text
        n = len(buf)
        i = self._pos

        while i < n:
            if self._depth == 0:
                ch = buf[i]
                if ch in _WHITESPACE or (self.unwrap_array and ch in "[,]"):
                    i += 1
                    continue
                if ch not in "{[":
                    raise FrameDecodeError(
                        f"Unexpected character {ch!r} between JSON values"
                    )
                self._start = i
                self._depth = 1
                i += 1
                continue

            if self._in_string:
                if self._escape:
                    self._escape = False
                    i += 1
                    continue
                match = _STRING_SPECIAL.search(buf, i)
                if match is None:
                    i = n
                    break
                i = match.start()
                if buf[i] == "\\":
                    self._escape = True
                else:
                    self._in_string = False
                i += 1
                continue

            match = _STRUCTURAL.search(buf, i)
            if match is None:
                i = n
                break
            i = match.start()
            ch = buf[i]
            if ch == '"':
                self._in_string = True
            elif ch in "{[":
                self._depth += 1
            else:
                self._depth -= 1
                if self._depth == 0:
                    frames.append(Frame(data=buf[self._start:i + 1]))
                    self._start = None
            i += 1

        if self._start is None:
            self._buffer = ""
            self._pos = 0
        else:
            self._buffer = buf[self._start:]
            self._pos = i - self._start
            self._start = 0
        self._check_size(len(self._buffer))

    def _finish(self) -> List[Frame]:
        if self._start is not None:
            raise FrameDecodeError("Stream ended inside an incomplete JSON value")
        return []


def create_frame_decoder(
    dialect: ProviderDialect,
    max_frame_bytes: Optional[int] = None,
) -> FrameDecoder:
    """Create the frame decoder matching a dialect's framing."""
    if dialect.framing == "sse":
        return SSEFrameDecoder(max_frame_bytes=max_frame_bytes)
    return JSONFrameDecoder(
        unwrap_array=dialect is ProviderDialect.GEMINI,
        max_frame_bytes=max_frame_bytes,
    )
