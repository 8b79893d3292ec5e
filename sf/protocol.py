"""
SF wire format — manifest and discovery datagram encode/decode.

Stream layout (TCP), little-endian:
  [magic "sf-": 3B][version: 1B][manifest_len: 4B]
  per file: [size: 8B][name_len: 4B][name: UTF-8, '/' separated]
  then the raw bytes of every file, back-to-back, in manifest order.

manifest_len counts the 8-byte header too.

Discovery datagram (UDP), 20 bytes:
  [family: 1B (4|6)][address: 4B|16B][port: 2B big-endian][zero padding]
"""

from __future__ import annotations

import ipaddress
import socket
import struct
from dataclasses import dataclass, field

from .errors import (
    BadMagic,
    DiscoveryError,
    FilesystemError,
    MalformedManifest,
    TruncatedTransfer,
    VersionMismatch,
)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

MAGIC: bytes = b"sf-"
VERSION: int = 3
HEADER_FMT: str = "<3sBI"           # magic(3s) version(B) manifest_len(I)
HEADER_SIZE: int = struct.calcsize(HEADER_FMT)  # = 8

RECORD_FMT: str = "<QI"             # size(Q) name_len(I)
RECORD_SIZE: int = struct.calcsize(RECORD_FMT)  # = 12

TCP_PORT: int = 8370                # 'S' 'F'
SIGNALING_PORT: int = 8369
CLIENT_BROADCAST_PORT: int = 38369

CHUNK_SIZE: int = 4 * 1024 * 1024   # 4 MiB, reused across files
SIGNAL_DELAY: float = 2.0
DISCOVERY_TIMEOUT: float = 60.0
CONNECT_TIMEOUT: float = 15.0

PATH_SEPARATORS: bytes = b"/\\"

ADDRESS_SIZE: int = 20
FAMILY_V4: int = 4
FAMILY_V6: int = 6


# ---------------------------------------------------------------------------
# Payload dataclasses
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ManifestEntry:
    size: int
    path: str               # full path as sent, before prefix stripping
    raw_path: bytes = field(repr=False, default=b"")

    def stripped(self, prefix_len: int) -> str:
        """Path with the first *prefix_len* bytes removed."""
        return self.raw_path[prefix_len:].decode("utf-8")


@dataclass
class Manifest:
    entries: list[ManifestEntry]
    prefix_len: int = 0     # bytes to drop from the front of every path

    @property
    def total_size(self) -> int:
        return sum(e.size for e in self.entries)


# ---------------------------------------------------------------------------
# Manifest encoding
# ---------------------------------------------------------------------------

def encode_name(name: str) -> bytes:
    """UTF-8 bytes of *name* with every backslash turned into '/'."""
    try:
        return name.replace("\\", "/").encode("utf-8")
    except UnicodeEncodeError as exc:
        raise FilesystemError(f"cannot encode file name {name!r} as UTF-8") from exc


def encode_manifest(entries) -> bytes:
    """
    Build the full manifest buffer for *entries*.

    Each entry needs ``size`` and ``rel_path`` attributes (see
    ``transfer.FileEntry``).  File bodies are not part of the buffer.
    """
    body = bytearray()
    for entry in entries:
        name = encode_name(entry.rel_path)
        body += struct.pack(RECORD_FMT, entry.size, len(name))
        body += name
    header = struct.pack(HEADER_FMT, MAGIC, VERSION, HEADER_SIZE + len(body))
    return header + bytes(body)


# ---------------------------------------------------------------------------
# Manifest decoding
# ---------------------------------------------------------------------------

def recv_exact(sock: socket.socket, n: int) -> bytes:
    """Blocking read of exactly n bytes. Raises TruncatedTransfer on close."""
    if n == 0:
        return b""
    buf = bytearray(n)
    view = memoryview(buf)
    received = 0
    while received < n:
        count = sock.recv_into(view[received:], n - received)
        if not count:
            raise TruncatedTransfer(
                f"connection closed after {received} of {n} bytes")
        received += count
    return bytes(buf)


def check_preamble(raw: bytes) -> None:
    """Validate magic and version (the first 4 bytes of the stream)."""
    magic, version = raw[:3], raw[3]
    if magic != MAGIC:
        raise BadMagic(f"bad header: {magic!r}")
    if version != VERSION:
        raise VersionMismatch(
            f"incompatible version: {version} (expected {VERSION})")


def common_prefix_len(names: list[bytes]) -> int:
    """
    Length of the longest shared prefix of *names* that ends right after a
    path separator.  Zero when there is no such separator.
    """
    prefix: bytes | None = None
    for name in names:
        if prefix is None:
            prefix = name
            continue
        n = 0
        for x, y in zip(prefix, name):
            if x != y:
                break
            n += 1
        prefix = prefix[:n]

    if not prefix:
        return 0
    last = max(prefix.rfind(bytes([sep])) for sep in PATH_SEPARATORS)
    return last + 1 if last >= 0 else 0


def decode_manifest_body(body: bytes, strip_prefix: bool = False) -> Manifest:
    """Parse the records that follow the header."""
    entries: list[ManifestEntry] = []
    i = 0
    while i < len(body):
        if i + RECORD_SIZE > len(body):
            raise MalformedManifest(f"record header at offset {i} runs past manifest end")
        size, name_len = struct.unpack_from(RECORD_FMT, body, i)
        i += RECORD_SIZE
        if i + name_len > len(body):
            raise MalformedManifest(f"file name at offset {i} runs past manifest end")
        raw = bytes(body[i:i + name_len])
        i += name_len
        try:
            name = raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise MalformedManifest(f"file name is not valid UTF-8: {raw!r}") from exc
        entries.append(ManifestEntry(size=size, path=name, raw_path=raw))

    prefix_len = 0
    if strip_prefix:
        prefix_len = common_prefix_len([e.raw_path for e in entries])
    return Manifest(entries=entries, prefix_len=prefix_len)


def read_manifest(sock: socket.socket, strip_prefix: bool = False) -> Manifest:
    """Read and decode one manifest from *sock*."""
    check_preamble(recv_exact(sock, 4))
    (total,) = struct.unpack("<I", recv_exact(sock, 4))
    if total < HEADER_SIZE:
        raise MalformedManifest(f"manifest length {total} is below {HEADER_SIZE}")
    body = recv_exact(sock, total - HEADER_SIZE)
    return decode_manifest_body(body, strip_prefix)


# ---------------------------------------------------------------------------
# Discovery datagram
# ---------------------------------------------------------------------------

def encode_address(host: str, port: int) -> bytes:
    """Serialize a socket address into the fixed 20-byte envelope."""
    ip = ipaddress.ip_address(host.split("%", 1)[0])
    tag = FAMILY_V4 if ip.version == 4 else FAMILY_V6
    data = bytes([tag]) + ip.packed + struct.pack("!H", port)
    return data.ljust(ADDRESS_SIZE, b"\x00")


def decode_address(data: bytes) -> tuple[str, int]:
    """Inverse of encode_address. Raises DiscoveryError on a bad datagram."""
    if not data:
        raise DiscoveryError("empty discovery datagram")
    tag = data[0]
    if tag == FAMILY_V4:
        width = 4
    elif tag == FAMILY_V6:
        width = 16
    else:
        raise DiscoveryError(f"invalid socket addr version: {tag}")
    if len(data) < 1 + width + 2:
        raise DiscoveryError(f"discovery datagram too short ({len(data)} bytes)")
    ip = ipaddress.ip_address(bytes(data[1:1 + width]))
    (port,) = struct.unpack_from("!H", data, 1 + width)
    return str(ip), port
