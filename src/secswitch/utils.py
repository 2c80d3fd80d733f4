"""Utility functions."""

import ipaddress


def unmap_ip(ip_str: str) -> str:
    """Strip the IPv4-mapped IPv6 prefix (::ffff:x.x.x.x) from an address.

    In dual-stack mode mitmproxy reports IPv4 peers as IPv4-mapped IPv6
    addresses, so the same host can show up in both forms.
    """
    if ip_str.lower().startswith("::ffff:"):
        candidate = ip_str[7:]
        try:
            ipaddress.IPv4Address(candidate)
            return candidate
        except ValueError:
            return ip_str
    return ip_str


def is_local_request(remote_addr: str | None, local_addr: str | None) -> bool:
    """Check whether a request came from the server itself.

    A request is local when the client address equals the address of the
    socket it connected to. Missing addresses count as remote.
    """
    if not remote_addr or not local_addr:
        return False
    return unmap_ip(remote_addr) == unmap_ip(local_addr)
