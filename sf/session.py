"""
SF transfer session: sender and receiver sides.

SendSession
-----------
    Writes the whole manifest in one go, then streams every file's bytes
    in manifest order through one reused CHUNK_SIZE buffer.

ReceiveSession
--------------
    Reads the manifest, then materialises each file under dest_dir,
    optionally dropping the common directory prefix of all names.
    Reads exactly the declared number of bytes per file; a short stream
    is fatal.

Neither side closes the socket; the caller owns it.
"""

from __future__ import annotations

import logging
import socket
from dataclasses import dataclass
from pathlib import Path, PurePosixPath

from .errors import FilesystemError, MalformedManifest, TruncatedTransfer
from .integrity import FileHasher
from .progress import NullProgress, ProgressTracker
from .protocol import CHUNK_SIZE, Manifest, encode_manifest, read_manifest
from .transfer import FileEntry, read_chunks

log = logging.getLogger("sf.session")


@dataclass(frozen=True)
class ReceivedFile:
    path: Path
    size: int
    digest: str          # BLAKE3 hex of the bytes written


def _counter(i: int, total: int) -> str:
    return f"[{i:>{len(str(total))}}/{total}]"


# ---------------------------------------------------------------------------
# Sender
# ---------------------------------------------------------------------------

class SendSession:
    """
    Send one or more files to a receiver over an established socket.
    The socket must be connected; caller is responsible for closing it.
    """

    def __init__(
        self,
        sock: socket.socket,
        entries: list[FileEntry],
        progress: ProgressTracker | NullProgress | None = None,
        chunk_size: int = CHUNK_SIZE,
    ) -> None:
        self._sock = sock
        self._entries = entries
        self._progress = progress or NullProgress()
        self._buffer = bytearray(chunk_size)

    def run(self) -> None:
        """Execute the full transfer. Raises on fatal error."""
        log.info("sending file list (%d file(s))...", len(self._entries))
        self._progress.set_total(len(self._entries))
        self._sock.sendall(encode_manifest(self._entries))
        for idx, entry in enumerate(self._entries, start=1):
            self._send_file(idx, entry)
        log.info("Session complete — %d file(s) sent", len(self._entries))

    def _send_file(self, idx: int, entry: FileEntry) -> None:
        log.info("%s sending file %s (%d bytes)...",
                 _counter(idx, len(self._entries)), entry.rel_path, entry.size)

        hasher = FileHasher()
        sent = 0
        with self._progress.file(idx, entry.rel_path, entry.size) as fp:
            for chunk in read_chunks(entry.path, self._buffer):
                # never send more than the manifest promised
                if sent + len(chunk) > entry.size:
                    raise FilesystemError(
                        f"{entry.path} grew while sending "
                        f"(manifest says {entry.size} bytes)")
                self._sock.sendall(chunk)
                hasher.update(chunk)
                sent += len(chunk)
                fp.advance(len(chunk))

        if sent != entry.size:
            raise FilesystemError(
                f"{entry.path} shrank while sending ({sent} of {entry.size} bytes)")
        log.debug("%s blake3=%s", entry.rel_path, hasher.hexdigest())


# ---------------------------------------------------------------------------
# Receiver
# ---------------------------------------------------------------------------

class ReceiveSession:
    """
    Handles the receiver side of one SF connection.
    Runs synchronously in the calling thread.
    """

    def __init__(
        self,
        sock: socket.socket,
        dest_dir: str | Path = ".",
        strip_prefix: bool = False,
        progress: ProgressTracker | NullProgress | None = None,
        chunk_size: int = CHUNK_SIZE,
    ) -> None:
        self._sock = sock
        self._dest_dir = Path(dest_dir)
        self._strip_prefix = strip_prefix
        self._progress = progress or NullProgress()
        self._buffer = bytearray(chunk_size)
        self._created_dirs: set[Path] = set()
        self.manifest: Manifest | None = None

    def run(self) -> list[ReceivedFile]:
        """Receive every file in the manifest. Raises on fatal error."""
        log.info("receiving file list...")
        manifest = self.manifest = read_manifest(self._sock, self._strip_prefix)
        if manifest.prefix_len:
            prefix = manifest.entries[0].raw_path[:manifest.prefix_len]
            log.info("stripping common prefix %r", prefix.decode("utf-8"))

        # every name is checked before anything is written
        targets = [
            (entry.size, self._destination(entry.stripped(manifest.prefix_len)))
            for entry in manifest.entries
        ]

        self._progress.set_total(len(targets))
        received: list[ReceivedFile] = []
        for idx, (size, dest) in enumerate(targets, start=1):
            log.info("%s receiving file %s (%d bytes)...",
                     _counter(idx, len(targets)), dest, size)
            received.append(self._receive_file(idx, dest, size))

        log.info("Session complete — %d file(s) received", len(received))
        return received

    # ------------------------------------------------------------------
    # Private
    # ------------------------------------------------------------------

    def _destination(self, name: str) -> Path:
        # absolute names are re-rooted under dest_dir
        rel = PurePosixPath(name.lstrip("/"))
        if not rel.parts:
            raise MalformedManifest(f"empty file name in manifest: {name!r}")
        if ".." in rel.parts:
            raise MalformedManifest(f"unsafe path in manifest: {name!r}")
        return self._dest_dir.joinpath(*rel.parts)

    def _ensure_parent(self, dest: Path) -> None:
        parent = dest.parent
        if parent in self._created_dirs:
            return
        try:
            parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise FilesystemError(f"cannot create directory {parent}: {exc}") from exc
        self._created_dirs.add(parent)

    def _receive_file(self, idx: int, dest: Path, size: int) -> ReceivedFile:
        self._ensure_parent(dest)
        try:
            fh = open(dest, "wb")
        except OSError as exc:
            raise FilesystemError(f"cannot create {dest}: {exc}") from exc

        hasher = FileHasher()
        view = memoryview(self._buffer)
        remaining = size
        try:
            with fh, self._progress.file(idx, str(dest), size) as fp:
                while remaining:
                    n = self._sock.recv_into(view, min(remaining, len(view)))
                    if not n:
                        raise TruncatedTransfer(
                            f"connection ended without receiving full file {dest} "
                            f"({size - remaining} of {size} bytes)")
                    chunk = view[:n]
                    try:
                        fh.write(chunk)
                    except OSError as exc:
                        raise FilesystemError(f"cannot write {dest}: {exc}") from exc
                    hasher.update(chunk)
                    remaining -= n
                    fp.advance(n)
        except TruncatedTransfer:
            dest.unlink(missing_ok=True)
            log.error("Removed incomplete file %s", dest)
            raise

        digest = hasher.hexdigest()
        log.debug("%s blake3=%s", dest, digest)
        return ReceivedFile(path=dest, size=size, digest=digest)
