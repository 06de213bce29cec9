"""Client information discovered by the DNS proxy."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class LeaseFileFormat(str, Enum):
    """Format of a DHCP lease file."""

    DNSMASQ = "dnsmasq"
    ISC_DHCPD = "isc-dhcpd"
    KEA_DHCP4 = "kea-dhcp4"

    def __str__(self) -> str:
        return self.value


@dataclass
class ClientInfo:
    """Information about a client that sent a query to the proxy."""

    mac: str = ""
    ip: str = ""
    hostname: str = ""
    is_self: bool = False
    client_id_pref: str = ""