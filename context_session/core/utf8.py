"""StreamingTextDecoder: reassemble per-token byte fragments into whole characters.

Tokens map to arbitrary byte strings, so a single UTF-8 character can be split
across two or more generated tokens. The decoder holds back the trailing bytes
of an unfinished character and releases text only on character boundaries.

Boundaries come from a small state machine over byte classes:

    START --ASCII--------------------------> emit 1 byte, START
    START --LEAD2/LEAD3/LEAD4--------------> EXPECT(n-1 continuations)
    START --CONTINUATION/INVALID-----------> drop byte, START
    EXPECT(k) --CONTINUATION, k == 1-------> emit character, START
    EXPECT(k) --CONTINUATION, k > 1--------> EXPECT(k-1)
    EXPECT(k) --anything else--------------> drop partial character, re-read byte in START
"""

from __future__ import annotations

import logging
from enum import Enum

logger = logging.getLogger(__name__)


class ByteClass(Enum):
    ASCII = "ascii"                 # 0xxxxxxx
    CONTINUATION = "continuation"   # 10xxxxxx
    LEAD2 = "lead2"                 # 110xxxxx
    LEAD3 = "lead3"                 # 1110xxxx
    LEAD4 = "lead4"                 # 11110xxx
    INVALID = "invalid"             # 11111xxx


# Total byte length of a character introduced by each class.
SEQUENCE_LENGTH: dict[ByteClass, int] = {
    ByteClass.ASCII: 1,
    ByteClass.LEAD2: 2,
    ByteClass.LEAD3: 3,
    ByteClass.LEAD4: 4,
}


def classify(byte: int) -> ByteClass:
    if byte < 0x80:
        return ByteClass.ASCII
    if byte < 0xC0:
        return ByteClass.CONTINUATION
    if byte < 0xE0:
        return ByteClass.LEAD2
    if byte < 0xF0:
        return ByteClass.LEAD3
    if byte < 0xF8:
        return ByteClass.LEAD4
    return ByteClass.INVALID


class StreamingTextDecoder:
    """Accumulates token fragments; ``feed`` returns only complete characters."""

    def __init__(self) -> None:
        self._pending = bytearray()

    @property
    def pending_bytes(self) -> bytes:
        return bytes(self._pending)

    def clear(self) -> None:
        self._pending.clear()

    def feed(self, fragment: bytes) -> str:
        """Append ``fragment`` and return every character it completes.

        An empty string means the buffered bytes end mid-character.
        """
        self._pending.extend(fragment)
        data = self._pending
        out = bytearray()
        committed = 0   # bytes before this index are emitted or dropped
        expecting = 0   # continuation bytes still needed for the open character
        i = 0
        while i < len(data):
            cls = classify(data[i])
            if expecting:
                if cls is ByteClass.CONTINUATION:
                    expecting -= 1
                    i += 1
                    if not expecting:
                        out += data[committed:i]
                        committed = i
                    continue
                logger.debug("Dropping truncated sequence %r", bytes(data[committed:i]))
                committed = i
                expecting = 0
                continue  # re-read this byte from START
            width = SEQUENCE_LENGTH.get(cls)
            i += 1
            if width is None:
                logger.debug("Dropping stray byte 0x%02x", data[i - 1])
                committed = i
            elif width == 1:
                out += data[committed:i]
                committed = i
            else:
                expecting = width - 1

        del data[:committed]
        # Structurally complete but still invalid (overlong, surrogate) -> U+FFFD.
        return out.decode("utf-8", errors="replace")
