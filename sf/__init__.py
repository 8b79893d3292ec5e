"""
SF — send files over a LAN.

A receiver listens and broadcasts its address; a sender dials it directly
or picks the address up from the broadcast.  One connection carries a
binary manifest followed by the raw bytes of every file.
"""

__version__ = "3.0.0"

from .connect import AUTO, accept_sender, connect_to_receiver, open_listener, wait_for_sender
from .errors import (
    AddressResolutionError,
    BadMagic,
    DiscoveryError,
    FilesystemError,
    MalformedManifest,
    ProtocolMismatch,
    SFError,
    TruncatedTransfer,
    VersionMismatch,
)
from .session import ReceivedFile, ReceiveSession, SendSession
from .transfer import FileEntry, walk_targets

__all__ = [
    "AUTO",
    "accept_sender",
    "connect_to_receiver",
    "open_listener",
    "wait_for_sender",
    "SFError",
    "ProtocolMismatch",
    "BadMagic",
    "VersionMismatch",
    "MalformedManifest",
    "TruncatedTransfer",
    "AddressResolutionError",
    "DiscoveryError",
    "FilesystemError",
    "ReceivedFile",
    "ReceiveSession",
    "SendSession",
    "FileEntry",
    "walk_targets",
]
