"""DroneBL DNS blocklist lookups."""

from __future__ import annotations

import enum
import ipaddress
import socket
from typing import Union

_SUFFIX = ".dnsbl.dronebl.org"

_NOT_FOUND_CODES = {
    code for code in (getattr(socket, "EAI_NONAME", None), getattr(socket, "EAI_NODATA", None)) if code is not None
}


class DroneBLResponse(enum.IntEnum):
    """Listing categories reported by DroneBL."""

    AllGood = 0
    IRCDrone = 3
    Bottler = 5
    UnknownSpambotOrDrone = 6
    DDOSDrone = 7
    SOCKSProxy = 8
    HTTPProxy = 9
    ProxyChain = 10
    OpenProxy = 11
    OpenDNSResolver = 12
    BruteForceAttackers = 13
    OpenWingateProxy = 14
    CompromisedRouter = 15
    AutoRootingWorms = 16
    AutoDetectedBotIP = 17
    Unknown = 255

    @classmethod
    def _missing_(cls, value: object) -> "DroneBLResponse | None":
        if isinstance(value, int) and 0 <= value <= 255:
            member = int.__new__(cls, value)
            member._name_ = f"DroneBLResponse({value})"
            member._value_ = value
            return member
        return None


class DNSBLError(Exception):
    """A blocklist lookup could not be completed."""


IPLike = Union[str, ipaddress.IPv4Address, ipaddress.IPv6Address]


def _reverse4(ip: ipaddress.IPv4Address) -> str:
    return ".".join(reversed(str(ip).split(".")))


def _reverse6(ip: ipaddress.IPv6Address) -> str:
    return ".".join(f"{byte & 0x0F:x}.{byte >> 4:x}" for byte in reversed(ip.packed))


def reverse(ip: IPLike) -> str:
    """The address in reverse-lookup order, without a zone suffix."""
    addr = ipaddress.ip_address(ip) if isinstance(ip, str) else ip
    if isinstance(addr, ipaddress.IPv6Address) and addr.ipv4_mapped is not None:
        addr = addr.ipv4_mapped
    if isinstance(addr, ipaddress.IPv4Address):
        return _reverse4(addr)
    return _reverse6(addr)


def lookup(ip_str: str) -> DroneBLResponse:
    """Look ``ip_str`` up in DroneBL; unlisted addresses give ``AllGood``."""
    try:
        addr = ipaddress.ip_address(ip_str)
    except ValueError as err:
        raise DNSBLError("dnsbl: input is not an IP address") from err

    name = reverse(addr) + _SUFFIX
    try:
        infos = socket.getaddrinfo(name, None, socket.AF_INET, socket.SOCK_STREAM)
    except socket.gaierror as err:
        if err.errno in _NOT_FOUND_CODES:
            return DroneBLResponse.AllGood
        raise DNSBLError(f"dnsbl: lookup of {name} failed: {err}") from err

    for _family, _type, _proto, _canon, sockaddr in infos:
        answer = ipaddress.IPv4Address(sockaddr[0])
        return DroneBLResponse(answer.packed[3])

    return DroneBLResponse.UnknownSpambotOrDrone