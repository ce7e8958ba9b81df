"""Incremental decoding of response bytes into text fragments.

Chunks delivered by the transport can end in the middle of a multi-byte
codepoint. The trailing incomplete sequence is held back as a *carry* and
prepended to the next chunk, so a split character is emitted once, intact,
instead of as replacement characters. Bytes that can never form a valid
sequence degrade to U+FFFD and never abort the stream.
"""

import codecs

from config import logger, settings


def decode_chunk(
    chunk: bytes, carry: bytes = b"", final: bool = False, encoding: str = "utf-8"
) -> tuple[str, bytes]:
    """Decodes one chunk, given the bytes held back from the previous one.

    Args:
        chunk: Raw bytes from the transport, possibly empty.
        carry: Incomplete trailing sequence returned by the previous call.
        final: True for the last chunk of the stream; any incomplete
            sequence left is then decoded with replacement characters.
        encoding: Codec name understood by :mod:`codecs`.
            Every call starts a fresh decoder, so a BOM-stripping codec such
            as ``utf-8-sig`` would strip a BOM from every chunk. Leading BOM
            handling belongs to the stateful :class:`ChunkDecoder`.

    Returns:
        tuple[str, bytes]: The decoded text and the new carry.
    """
    decoder = codecs.getincrementaldecoder(encoding)(errors="replace")
    text = decoder.decode(carry + chunk, final=final)
    pending = decoder.getstate()[0]
    return text, pending


class ChunkDecoder:
    """Stateful decoder for one response stream.

    Wraps an incremental decoder from :mod:`codecs` in ``replace`` mode. The
    default codec comes from settings and is ``utf-8-sig``, which drops a
    leading byte order mark.

    Attributes:
        encoding (str): Codec used for the stream.
    """

    def __init__(self, encoding: str = None):
        self.encoding = encoding or settings.encoding
        self._decoder = codecs.getincrementaldecoder(self.encoding)(errors="replace")

    @property
    def carry(self) -> bytes:
        """Bytes of an incomplete codepoint waiting for the next chunk."""
        return self._decoder.getstate()[0]

    def decode(self, chunk: bytes) -> str:
        text = self._decoder.decode(chunk)
        if self.carry:
            logger.debug({"carry": len(self.carry), "chunk": len(chunk)})
        return text

    def flush(self) -> str:
        """Decodes whatever is still held back; called once the stream ends."""
        return self._decoder.decode(b"", final=True)
