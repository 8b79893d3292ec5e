"""
UDP broadcast discovery for SF.

Receiver side — survey():
  - Polls the TCP listener with a non-blocking accept
  - While nobody has connected, broadcasts the listener's address as a
    20-byte datagram to the subnet broadcast address, then sleeps
    SIGNAL_DELAY seconds
  - Runs until a sender connects; any I/O error other than would-block
    raises DiscoveryError so the caller can fall back to a plain accept

Sender side — discover_server():
  - Listens on SIGNALING_PORT for one datagram and decodes the receiver's
    TCP address from it

Broadcast rather than multicast: inside one LAN segment it is enough,
and routers drop it at the subnet edge.
"""

from __future__ import annotations

import ipaddress
import logging
import socket
import time

from .errors import AddressResolutionError, DiscoveryError
from .protocol import (
    CLIENT_BROADCAST_PORT,
    DISCOVERY_TIMEOUT,
    SIGNAL_DELAY,
    SIGNALING_PORT,
    decode_address,
    encode_address,
)

log = logging.getLogger("sf.discovery")

BUFFER_SIZE: int = 64


def broadcast_address(ip: str, netmask: str) -> str:
    """Return ``ip | ~netmask`` for either address family."""
    try:
        addr = ipaddress.ip_address(ip.split("%", 1)[0])
        mask = ipaddress.ip_address(netmask)
    except ValueError as exc:
        raise AddressResolutionError(str(exc)) from exc
    if addr.version != mask.version:
        raise AddressResolutionError(
            f"subnet mask {netmask} is not the same IP version as {ip}")
    host_bits = ~int(mask) & ((1 << addr.max_prefixlen) - 1)
    return str(type(addr)(int(addr) | host_bits))


# ---------------------------------------------------------------------------
# Receiver side
# ---------------------------------------------------------------------------

def _make_broadcast_socket(family: int, port: int) -> socket.socket:
    sock = socket.socket(family, socket.SOCK_DGRAM)
    try:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_BROADCAST, 1)
        sock.bind(("", port))
    except OSError:
        sock.close()
        raise
    return sock


def survey(
    listener: socket.socket,
    netmask: str,
    *,
    signal_port: int = SIGNALING_PORT,
    broadcast_port: int = CLIENT_BROADCAST_PORT,
    delay: float = SIGNAL_DELAY,
) -> tuple[socket.socket, tuple]:
    """
    Broadcast the listener's address until a sender connects.

    Returns ``(conn, addr)`` from the accepted connection, with *conn* in
    blocking mode.  Leaves *listener* non-blocking.
    """
    try:
        host, port = listener.getsockname()[:2]
        datagram = encode_address(host, port)
        target = broadcast_address(host, netmask)
    except (OSError, ValueError, AddressResolutionError) as exc:
        raise DiscoveryError(f"cannot derive broadcast address: {exc}") from exc

    try:
        listener.setblocking(False)
        udp = _make_broadcast_socket(listener.family, broadcast_port)
    except OSError as exc:
        raise DiscoveryError(f"cannot open broadcast socket: {exc}") from exc

    log.debug("Surveying: announcing %s:%d to %s:%d", host, port, target, signal_port)
    with udp:
        while True:
            try:
                conn, addr = listener.accept()
            except BlockingIOError:
                pass
            except OSError as exc:
                raise DiscoveryError(f"accept failed: {exc}") from exc
            else:
                conn.setblocking(True)
                log.info("Client connected from %s:%d", addr[0], addr[1])
                return conn, addr

            try:
                udp.sendto(datagram, (target, signal_port))
            except OSError as exc:
                raise DiscoveryError(f"broadcast to {target} failed: {exc}") from exc
            log.debug("Announced to %s:%d", target, signal_port)
            time.sleep(delay)


# ---------------------------------------------------------------------------
# Sender side
# ---------------------------------------------------------------------------

def discover_server(
    *,
    port: int = SIGNALING_PORT,
    timeout: float | None = DISCOVERY_TIMEOUT,
) -> tuple[str, int]:
    """
    Wait for one discovery datagram and return the receiver's address.

    *timeout* is in seconds; ``None`` waits forever.  Running out of time
    raises DiscoveryError, which is fatal for the sender.
    """
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    try:
        with sock:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind(("", port))
            sock.settimeout(timeout)
            data, src = sock.recvfrom(BUFFER_SIZE)
    except TimeoutError as exc:
        raise DiscoveryError(
            f"no receiver announced itself within {timeout:g}s") from exc
    except OSError as exc:
        raise DiscoveryError(f"discovery failed: {exc}") from exc

    host, tcp_port = decode_address(data)
    log.info("Discovered receiver at %s:%d (announced by %s)", host, tcp_port, src[0])
    return host, tcp_port
