"""
Error kinds raised by SF.

Everything derives from SFError so the CLI can report any of them with a
single handler.  None of these are retried: each one ends the transfer.
"""

from __future__ import annotations


class SFError(Exception):
    pass


class ProtocolMismatch(SFError):
    """The peer does not speak this protocol (magic or version differ)."""


class BadMagic(ProtocolMismatch):
    pass


class VersionMismatch(ProtocolMismatch):
    pass


class MalformedManifest(SFError):
    """A manifest record runs past its declared length or has a bad path."""


class TruncatedTransfer(SFError):
    """The stream closed before a declared length was fully received."""


class AddressResolutionError(SFError):
    """No usable local interface, or an invalid user-supplied address."""


class DiscoveryError(SFError):
    """Survey or discovery I/O failed (other than would-block)."""


class FilesystemError(SFError):
    pass
