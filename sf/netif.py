"""
Local interface addresses usable for binding, via psutil.

Only interfaces that are up contribute.  Loopback addresses and
addresses without a netmask are skipped.  IPv4 comes before IPv6 so the
first entry is the one most likely to have a working broadcast domain.
"""

from __future__ import annotations

import ipaddress
import socket
from dataclasses import dataclass

import psutil


@dataclass(frozen=True)
class LocalAddress:
    ip: str              # may carry an IPv6 scope suffix, e.g. "fe80::1%eth0"
    netmask: str
    interface: str = ""

    def __str__(self) -> str:
        return f"{self.ip}/{self.netmask} ({self.interface})"


def local_addresses() -> list[LocalAddress]:
    stats = psutil.net_if_stats()
    v4: list[LocalAddress] = []
    v6: list[LocalAddress] = []
    for name, addrs in psutil.net_if_addrs().items():
        st = stats.get(name)
        if st is None or not st.isup:
            continue
        for addr in addrs:
            if addr.family not in (socket.AF_INET, socket.AF_INET6):
                continue
            if not addr.netmask:
                continue
            ip = ipaddress.ip_address(addr.address.split("%", 1)[0])
            if ip.is_loopback:
                continue
            entry = LocalAddress(ip=addr.address, netmask=addr.netmask, interface=name)
            (v4 if ip.version == 4 else v6).append(entry)
    return v4 + v6
