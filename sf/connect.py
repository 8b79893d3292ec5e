"""
Connection establishment: exactly one TCP stream per run.

Sender:   connect_to_receiver("auto" | ip)
Receiver: open_listener() → accept_sender()   (or wait_for_sender())
"""

from __future__ import annotations

import ipaddress
import logging
import socket

from .discovery import discover_server, survey
from .errors import AddressResolutionError, DiscoveryError
from .netif import LocalAddress, local_addresses
from .protocol import (
    CLIENT_BROADCAST_PORT,
    CONNECT_TIMEOUT,
    DISCOVERY_TIMEOUT,
    SIGNAL_DELAY,
    SIGNALING_PORT,
    TCP_PORT,
)

log = logging.getLogger("sf.connect")

AUTO: str = "auto"


# ---------------------------------------------------------------------------
# Sender
# ---------------------------------------------------------------------------

def connect_to_receiver(
    address: str | None,
    *,
    port: int = TCP_PORT,
    signal_port: int = SIGNALING_PORT,
    discovery_timeout: float | None = DISCOVERY_TIMEOUT,
    connect_timeout: float = CONNECT_TIMEOUT,
) -> socket.socket:
    """
    Dial the receiver.  *address* of None or "auto" waits for a discovery
    datagram; anything else must be a literal IP address.
    """
    if address is None or address == AUTO:
        log.info("attempting to discover the server's ip...")
        host, port = discover_server(port=signal_port, timeout=discovery_timeout)
    else:
        try:
            ipaddress.ip_address(address.split("%", 1)[0])
        except ValueError as exc:
            raise AddressResolutionError(f"invalid ip format: {address!r}") from exc
        host = address

    log.info("connecting to server %s:%d...", host, port)
    sock = socket.create_connection((host, port), timeout=connect_timeout)
    sock.settimeout(None)           # blocking from here on
    return sock


# ---------------------------------------------------------------------------
# Receiver
# ---------------------------------------------------------------------------

def default_local_address() -> LocalAddress:
    addrs = local_addresses()
    if not addrs:
        raise AddressResolutionError("no usable network interface found")
    return addrs[0]


def open_listener(local: LocalAddress, port: int = TCP_PORT) -> socket.socket:
    """Bind and listen on *local*:*port* (port 0 picks a free one)."""
    family, _, _, _, sockaddr = socket.getaddrinfo(
        local.ip, port, type=socket.SOCK_STREAM, flags=socket.AI_NUMERICHOST)[0]
    listener = socket.socket(family, socket.SOCK_STREAM)
    try:
        listener.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        listener.bind(sockaddr)
        listener.listen(1)
    except OSError:
        listener.close()
        raise
    return listener


def accept_sender(
    listener: socket.socket,
    netmask: str,
    *,
    signal_port: int = SIGNALING_PORT,
    broadcast_port: int = CLIENT_BROADCAST_PORT,
    delay: float = SIGNAL_DELAY,
) -> tuple[socket.socket, tuple]:
    """
    Survey for a sender; if broadcasting is impossible fall back to a
    blocking accept, which needs the sender to dial our address directly.
    """
    try:
        return survey(listener, netmask, signal_port=signal_port,
                      broadcast_port=broadcast_port, delay=delay)
    except DiscoveryError as exc:
        log.warning("cannot broadcast ip to potential clients, "
                    "direct ip must be used: %s", exc)
    listener.setblocking(True)
    conn, addr = listener.accept()
    log.info("Client connected from %s:%d", addr[0], addr[1])
    return conn, addr


def wait_for_sender(
    local: LocalAddress | None = None,
    *,
    port: int = TCP_PORT,
    signal_port: int = SIGNALING_PORT,
    broadcast_port: int = CLIENT_BROADCAST_PORT,
    delay: float = SIGNAL_DELAY,
) -> tuple[socket.socket, tuple]:
    """Listen on the first usable local address and return one connection."""
    local = local or default_local_address()
    with open_listener(local, port) as listener:
        log.info("waiting for client on %s (attempting to broadcast own ip)...", local.ip)
        return accept_sender(listener, local.netmask, signal_port=signal_port,
                             broadcast_port=broadcast_port, delay=delay)
