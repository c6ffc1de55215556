from __future__ import annotations

import ipaddress
import logging
from typing import Iterable, Optional, Union

logger = logging.getLogger("mpesa_gateway.callbacks")

# Published Safaricom callback egress addresses
SAFARICOM_IPS = (
    "196.201.214.200",
    "196.201.214.206",
    "196.201.213.114",
    "196.201.214.207",
    "196.201.214.208",
    "196.201.213.44",
    "196.201.212.127",
    "196.201.212.138",
    "196.201.212.129",
    "196.201.212.136",
    "196.201.212.74",
    "196.201.212.69",
)

_Network = Union[ipaddress.IPv4Network, ipaddress.IPv6Network]


def _to_network(entry: str) -> Optional[_Network]:
    try:
        return ipaddress.ip_network(entry.strip(), strict=False)
    except ValueError:
        logger.warning("ignoring invalid allow-list entry=%r", entry)
        return None


def client_ip(source: Optional[str]) -> Optional[str]:
    """First hop of an X-Forwarded-For style value."""
    if not source:
        return None
    first = source.split(",", 1)[0].strip()
    return first or None


class IpAllowList:
    def __init__(self, entries: Iterable[str] = SAFARICOM_IPS) -> None:
        self.entries = tuple(entries)
        self._networks = [n for n in (_to_network(e) for e in self.entries) if n is not None]

    def allows(self, source: Optional[str]) -> bool:
        ip = client_ip(source)
        if ip is None:
            return False
        try:
            addr = ipaddress.ip_address(ip)
        except ValueError:
            return False
        return any(addr in net for net in self._networks)
