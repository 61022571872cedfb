from __future__ import annotations

import ipaddress
import logging
import socket
from collections.abc import Callable, Iterable, Mapping
from typing import Any

import psutil

LOGGER = logging.getLogger(__name__)

AddressTable = Mapping[str, Iterable[Any]]

_IP_FAMILIES = (socket.AF_INET, socket.AF_INET6)


def _prefix_length(address: ipaddress.IPv4Address | ipaddress.IPv6Address, netmask: str | None) -> int:
    if not netmask:
        return address.max_prefixlen
    mask = ipaddress.ip_address(netmask.split("%", 1)[0])
    return bin(int(mask)).count("1")


def interface_addresses(addrs: Iterable[Any]) -> list[str]:
    """Render one interface's IP addresses in CIDR text form (``10.0.0.5/24``).

    Link-layer entries are skipped and IPv6 zone suffixes (``%eth0``) are
    dropped. Raises ``ValueError`` when an entry cannot be parsed.
    """
    rendered: list[str] = []
    for addr in addrs:
        if addr.family not in _IP_FAMILIES:
            continue
        host = ipaddress.ip_address(addr.address.split("%", 1)[0])
        rendered.append(f"{host}/{_prefix_length(host, addr.netmask)}")
    return rendered


def _matches(target: str, cidr: str, match_mode: str) -> bool:
    if match_mode == "exact":
        try:
            return ipaddress.ip_interface(cidr).ip == ipaddress.ip_address(target)
        except ValueError:
            return False
    return target in cidr


def is_ip_present(
    ip: str,
    *,
    match_mode: str = "substring",
    addresses_fn: Callable[[], AddressTable] = psutil.net_if_addrs,
) -> bool:
    """Return True if *ip* is bound to any local network interface.

    In ``substring`` mode an address matches when its CIDR text contains *ip*,
    so ``10.0.0.1`` also matches ``10.0.0.11/24``. ``exact`` mode compares
    parsed addresses instead.

    Enumeration errors are logged and never raised: a failure to list
    interfaces means "absent", and an interface whose addresses cannot be read
    is skipped.
    """
    try:
        table = addresses_fn()
    except OSError:
        LOGGER.exception("Failed to get network interfaces")
        return False

    for interface, addrs in table.items():
        try:
            rendered = interface_addresses(addrs)
        except (OSError, ValueError) as exc:
            LOGGER.error("Failed to get addresses for interface %s: %s", interface, exc)
            continue

        for cidr in rendered:
            if _matches(ip, cidr, match_mode):
                LOGGER.debug("Found %s on interface %s (%s)", ip, interface, cidr)
                return True
    return False
