"""
Stream relay.

Reframes the provider's server-sent-event stream into this service's own
minimal frames:

    data: {"content": "<fragment>"}\\n\\n
    data: [DONE]\\n\\n

Only plain content deltas are forwarded. Tool-call deltas, keep-alive
comments and malformed records are dropped without ending the stream.
"""

import codecs
import json
import logging
from typing import Iterable, Iterator, Optional

logger = logging.getLogger(__name__)

DATA_PREFIX = "data:"
DONE_SENTINEL = "[DONE]"
DONE_FRAME = b"data: [DONE]\n\n"


def content_frame(fragment: str) -> bytes:
    """Encode one text fragment as an outbound event."""
    return f"data: {json.dumps({'content': fragment})}\n\n".encode("utf-8")


class MalformedRecord(ValueError):
    """A stream record that is not a chat completion chunk."""


def parse_delta(payload: str) -> Optional[str]:
    """
    Read the text delta of one provider event payload.

    Returns None for well-formed chunks that carry no text (role-only
    deltas, tool-call deltas, finish_reason and usage chunks).

    Raises:
        MalformedRecord: If the payload is not JSON or not chunk-shaped
    """
    try:
        parsed = json.loads(payload)
    except ValueError as e:
        raise MalformedRecord(f"not JSON: {e}") from e
    if not isinstance(parsed, dict):
        raise MalformedRecord("chunk is not an object")

    choices = parsed.get("choices") or []
    if not isinstance(choices, list):
        raise MalformedRecord("choices is not a list")
    if not choices:
        return None

    choice = choices[0]
    if not isinstance(choice, dict):
        raise MalformedRecord("choice is not an object")
    delta = choice.get("delta") or {}
    if not isinstance(delta, dict):
        raise MalformedRecord("delta is not an object")

    content = delta.get("content")
    if content is not None and not isinstance(content, str):
        raise MalformedRecord("content is not a string")
    return content or None


def extract_fragment(payload: str) -> Optional[str]:
    """Pull the text delta out of one payload; None when there is none."""
    try:
        return parse_delta(payload)
    except MalformedRecord:
        return None


class StreamRelay:
    """
    Relays one upstream stream.

    Partial lines are held in the buffer until the newline that completes
    them arrives; multi-byte characters split across reads are decoded
    incrementally.
    """

    def __init__(self, upstream: Iterable[bytes]):
        self.upstream = upstream
        self.finished = False
        self.fragments_sent = 0
        self.records_skipped = 0
        self._buffer = ""
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

    def _handle_line(self, line: str) -> Optional[bytes]:
        """Return the outbound frame for one complete line, if any."""
        line = line.strip()
        if not line.startswith(DATA_PREFIX):
            return None

        data = line[len(DATA_PREFIX):].strip()
        if data == DONE_SENTINEL:
            self.finished = True
            return DONE_FRAME

        try:
            fragment = parse_delta(data)
        except MalformedRecord as e:
            self.records_skipped += 1
            logger.debug("Skipping malformed stream record (%s): %.200s", e, data)
            return None
        if fragment is None:
            return None

        self.fragments_sent += 1
        return content_frame(fragment)

    def __iter__(self) -> Iterator[bytes]:
        try:
            for chunk in self.upstream:
                self._buffer += self._decoder.decode(chunk)
                *lines, self._buffer = self._buffer.split("\n")
                for line in lines:
                    frame = self._handle_line(line)
                    if frame is not None:
                        yield frame
                    if self.finished:
                        return

            # upstream closed; whatever is left is as complete as it gets
            self._buffer += self._decoder.decode(b"", final=True)
            for line in self._buffer.split("\n"):
                frame = self._handle_line(line)
                if frame is not None:
                    yield frame
                if self.finished:
                    return
            self._buffer = ""

            self.finished = True
            yield DONE_FRAME
        finally:
            close = getattr(self.upstream, "close", None)
            if callable(close):
                close()
            logger.info(
                "Stream relay closed (fragments=%d, skipped=%d, finished=%s)",
                self.fragments_sent, self.records_skipped, self.finished
            )


def relay_stream(upstream: Iterable[bytes]) -> Iterator[bytes]:
    """Convenience wrapper: iterate outbound frames for an upstream byte stream."""
    return iter(StreamRelay(upstream))
