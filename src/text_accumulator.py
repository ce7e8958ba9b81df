"""Append-only text buffer producing cumulative snapshots."""

import io


class TextAccumulator:
    """Grows one text buffer per stream.

    Fragments are written to an :class:`io.StringIO`, so appending does not
    rebuild the buffer. The snapshot string is built lazily, once per growth:
    that copy is the only O(n) step, and reading the snapshot again before the
    next fragment returns the same string. Every snapshot is a prefix of the
    next one; nothing already emitted is ever rewritten. Not safe for
    concurrent appends, one accumulator belongs to one stream.
    """

    def __init__(self):
        self._buffer = io.StringIO()
        self._length = 0
        self._snapshot = ""
        self._stale = False

    def write(self, fragment: str) -> None:
        """Appends ``fragment`` without building a snapshot."""
        if fragment:
            self._length += self._buffer.write(fragment)
            self._stale = True

    def append(self, fragment: str) -> str:
        """Appends ``fragment`` and returns the whole buffer."""
        self.write(fragment)
        return self.snapshot

    @property
    def snapshot(self) -> str:
        if self._stale:
            self._snapshot = self._buffer.getvalue()
            self._stale = False
        return self._snapshot

    def __len__(self) -> int:
        return self._length
