"""
Integrity helpers — BLAKE3 hashing.

The digest never goes on the wire; both ends log it so a transfer can be
checked by eye.

FileHasher().update(chunk) ... .hexdigest() → str
"""

from __future__ import annotations

import blake3 as _b3


class FileHasher:
    """Incremental BLAKE3 over the chunks of one file."""

    def __init__(self) -> None:
        self._h = _b3.blake3()

    def update(self, data: bytes | memoryview) -> None:
        self._h.update(data)

    def hexdigest(self) -> str:
        return self._h.hexdigest()

