"""Incremental line splitting for server-sent event streams."""

from __future__ import annotations

import codecs


class LineBuffer:
    """Turn arbitrarily split byte chunks into complete lines.

    Network chunk boundaries never line up with event boundaries, and may
    even fall inside a multi-byte character, so decoding is incremental and
    the trailing fragment is kept until the next chunk completes it.
    """

    def __init__(self, encoding: str = "utf-8") -> None:
        self._decoder = codecs.getincrementaldecoder(encoding)(errors="replace")
        self._pending = ""

    def feed(self, chunk: bytes | str) -> list[str]:
        if isinstance(chunk, bytes):
            text = self._decoder.decode(chunk)
        else:
            text = chunk
        if not text:
            return []
        self._pending += text
        lines = self._pending.split("\n")
        self._pending = lines.pop()
        return [line.rstrip("\r") for line in lines]

    def flush(self) -> list[str]:
        """Return whatever is left once the stream has ended."""

        tail = self._decoder.decode(b"", final=True)
        remaining = (self._pending + tail).rstrip("\r")
        self._pending = ""
        return [remaining] if remaining else []


def sse_data(line: str) -> str | None:
    """Return the payload of a ``data:`` line, or None for anything else."""

    if not line.strip() or not line.startswith("data:"):
        return None
    return line[5:].strip()


__all__ = ["LineBuffer", "sse_data"]
