"""
This module provides utility functions for recording requester IPs as provenance.
"""

import ipaddress

UNKNOWN_IP = "unknown"

# Bits kept from an IPv6 address: the first five groups.
IPV6_KEPT_PREFIX = 80


def anonymize_ip(ip: str) -> str:
    """
    Zero the host-identifying part of an IP address.

    IPv4 addresses lose their last octet, IPv6 addresses keep only their first
    five groups. Values that are not IP addresses (e.g. "localhost") are
    returned unchanged.
    """
    ip = ip.strip()
    if not ip or "localhost" in ip:
        return ip

    try:
        address = ipaddress.ip_address(ip)
    except ValueError:
        return ip

    if address.version == 4:
        network = ipaddress.ip_network(f"{address}/24", strict=False)
    else:
        network = ipaddress.ip_network(f"{address}/{IPV6_KEPT_PREFIX}", strict=False)
    return str(network.network_address)


def client_ip(remote_addr: str | None, forwarded_for: str | None = None) -> str:
    """
    Build the provenance IP string for a request.

    When the request came through proxies, only the client entry of the
    `X-Forwarded-For` chain is anonymized; the proxy addresses are kept as-is.
    """
    if forwarded_for and forwarded_for.strip():
        client, sep, proxies = forwarded_for.strip().partition(",")
        return f"{anonymize_ip(client)}{sep}{proxies}"
    if remote_addr:
        return anonymize_ip(remote_addr)
    return UNKNOWN_IP
