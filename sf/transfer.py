"""
File walker and bounded chunked reader.

walk_targets(paths) → list[FileEntry]
    Expands directories recursively (sorted, so the order is stable).
    Files given directly are kept as-is.  rel_path keeps the path the
    user typed, so absolute arguments produce absolute names; the
    receiver's --strip-prefix is there to shorten those.

read_chunks(path, buffer) → Iterator[memoryview]
    Fills one caller-owned buffer per read and yields the filled part.
    The buffer is reused across chunks and across files.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator

from .errors import FilesystemError
from .protocol import encode_name


@dataclass(frozen=True)
class FileEntry:
    path: Path           # path used to open the file
    rel_path: str        # name sent in the manifest, '/' separated
    size: int            # file size in bytes


def _entry(path: Path) -> FileEntry:
    try:
        size = path.stat().st_size
    except OSError as exc:
        raise FilesystemError(f"cannot stat {path}: {exc}") from exc
    rel_path = str(path).replace(os.sep, "/")
    encode_name(rel_path)       # undecodable names fail before any dial
    return FileEntry(path=path, rel_path=rel_path, size=size)


def walk_targets(paths: list[str | Path]) -> list[FileEntry]:
    """Flatten *paths* into the regular files to send, in a stable order."""
    result: list[FileEntry] = []
    for raw in paths:
        p = Path(raw)
        if p.is_file():
            result.append(_entry(p))
        elif p.is_dir():
            for root, dirs, files in os.walk(p):
                dirs.sort()
                for fname in sorted(files):
                    fp = Path(root) / fname
                    if fp.is_file():
                        result.append(_entry(fp))
        else:
            raise FilesystemError(f"Path not found: {p}")
    return result


def read_chunks(path: Path | str, buffer: bytearray) -> Iterator[memoryview]:
    """
    Yield views into *buffer*, each holding the next block of *path*.
    A view is only valid until the next one is requested.
    """
    view = memoryview(buffer)
    try:
        fh = open(path, "rb")
    except OSError as exc:
        raise FilesystemError(f"cannot open {path}: {exc}") from exc
    with fh:
        while True:
            try:
                n = fh.readinto(buffer)
            except OSError as exc:
                raise FilesystemError(f"cannot read {path}: {exc}") from exc
            if not n:
                break
            yield view[:n]
