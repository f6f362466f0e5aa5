"""
Local network address discovery for the operator banner.
"""

import ipaddress
import logging
import socket
from typing import List

logger = logging.getLogger(__name__)

# Never contacted; connecting a UDP socket only selects a route
_ROUTE_PROBE = ("192.0.2.1", 9)


def _is_external(address: str) -> bool:
    try:
        ip = ipaddress.ip_address(address)
    except ValueError:
        return False
    return not (ip.is_loopback or ip.is_unspecified or ip.is_link_local)


def _primary_address() -> str:
    probe = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    try:
        probe.connect(_ROUTE_PROBE)
        return probe.getsockname()[0]
    finally:
        probe.close()


def get_local_ips() -> List[str]:
    """
    Non-loopback IPv4 addresses of this machine, primary route first.

    Interfaces are not enumerated. Only the source address of the default
    route and whatever the hostname resolves to are reported, so on a
    multi-homed host (e.g. Wi-Fi plus Ethernet) an address on a secondary
    interface is missing unless the hostname maps to it. The hostname lookup
    can block on a slow resolver.

    Returns an empty list when nothing can be discovered.
    """
    candidates: List[str] = []

    try:
        candidates.append(_primary_address())
    except OSError as e:
        logger.debug(f"Route probe failed: {e}")

    try:
        infos = socket.getaddrinfo(socket.gethostname(), None, socket.AF_INET, socket.SOCK_DGRAM)
        candidates.extend(info[4][0] for info in infos)
    except OSError as e:
        logger.debug(f"Hostname lookup failed: {e}")

    ips: List[str] = []
    for address in candidates:
        if _is_external(address) and address not in ips:
            ips.append(address)
    return ips
