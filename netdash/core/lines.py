"""
Incremental line assembly for streamed process output.
"""

from typing import List


class LineAssembler:
    """
    Turn arbitrarily split output chunks into complete text lines.

    The unterminated tail of each chunk is kept as bytes until the next
    chunk arrives, so a line (or a multi-byte character) split across two
    reads is reassembled exactly. The final unterminated line is only
    returned by :meth:`flush`, once the stream has closed.
    """

    def __init__(self, encoding: str = "utf-8"):
        self.encoding = encoding
        self._tail = b""

    def feed(self, chunk: bytes) -> List[str]:
        """
        Add a chunk of output.

        Args:
            chunk: Raw bytes read from the process

        Returns:
            All lines completed by this chunk, in stream order
        """
        parts = (self._tail + chunk).split(b"\n")
        self._tail = parts.pop()
        return [self._decode(part) for part in parts]

    def flush(self) -> List[str]:
        """Return the pending unterminated line, if any, and reset."""
        tail, self._tail = self._tail, b""
        if not tail:
            return []
        return [self._decode(tail)]

    @property
    def pending(self) -> bytes:
        """Bytes received after the last line break."""
        return self._tail

    def _decode(self, raw: bytes) -> str:
        line = raw.decode(self.encoding, errors="replace")
        if line.endswith("\r"):
            line = line[:-1]
        return line
