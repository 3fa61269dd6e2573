"""Newline-delimited JSON framing for streamed chat fragments."""
import codecs
import json
import logging
from typing import List, Optional

from services.errors import ParseError

logger = logging.getLogger(__name__)


def encode_fragment(text: str) -> bytes:
    """Frame one text fragment as a {"message": {"content": ...}} line."""
    return (json.dumps({"message": {"content": text}}, ensure_ascii=False) + "\n").encode("utf-8")


def parse_fragment(line: str) -> str:
    """
    Extract message.content from one stream line.

    Raises:
        ParseError: If the line is not JSON or carries no non-empty content
    """
    try:
        parsed = json.loads(line)
    except ValueError as e:
        raise ParseError(f"invalid JSON: {e}") from e

    message = parsed.get("message") if isinstance(parsed, dict) else None
    content = message.get("content") if isinstance(message, dict) else None
    if not isinstance(content, str) or not content:
        raise ParseError("line has no message.content")
    return content


class NDJSONDecoder:
    """
    Incremental decoder for a streamed /chat body.

    Bytes may arrive split anywhere, including inside a JSON line or inside a
    multi-byte UTF-8 character. Complete lines are parsed as they are
    assembled; lines that fail to parse are dropped.
    """

    def __init__(self):
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self.dropped = 0

    def feed(self, data: bytes) -> List[str]:
        """Decode a chunk and return the fragments of every line it completes."""
        self._buffer += self._decoder.decode(data)
        *lines, self._buffer = self._buffer.split("\n")
        return self._parse_lines(lines)

    def flush(self) -> List[str]:
        """Parse whatever remains once the stream has ended."""
        self._buffer += self._decoder.decode(b"", final=True)
        remainder, self._buffer = self._buffer, ""
        return self._parse_lines([remainder])

    def _parse_lines(self, lines: List[str]) -> List[str]:
        fragments = []
        for line in lines:
            fragment = self._parse_line(line)
            if fragment is not None:
                fragments.append(fragment)
        return fragments

    def _parse_line(self, line: str) -> Optional[str]:
        if not line.strip():
            return None
        try:
            return parse_fragment(line)
        except ParseError as e:
            self.dropped += 1
            logger.debug(f"Dropping stream line ({e.detail}): {line[:80]!r}")
            return None
