"""Contains utility functions for network stuff"""

from netaddr import valid_ipv4, valid_ipv6

from kubeprov import API_SERVER_PORT


def is_port(port):
    """Checks if a port is valid"""

    return isinstance(port, int) and 0 <= port <= 65535


def is_ip(ip):
    """Checks if an IP is a valid IPv4 or IPv6 address"""

    return valid_ipv4(ip) or valid_ipv6(ip)


def split_host_port(address):
    """Split an endpoint into host and port.

    IPv6 addresses must be written in brackets when they carry a port
    (``[fd00::1]:6443``). A bare IPv6 address is returned as host.

    Args:
        address (str): ``host``, ``host:port``, ``[v6]`` or ``[v6]:port``

    Returns:
        tuple of host (str) and port (int or None)

    Raises:
        ValueError if the address is empty, the host contains whitespace
        or control characters, or the port is empty or invalid.
    """
    if not address:
        raise ValueError("address can't be empty")

    if address.startswith("["):
        host, sep, rest = address[1:].partition("]")
        if not sep or not host or rest[:1] not in ("", ":"):
            raise ValueError(f"invalid address '{address}'")
        port = rest[1:] if rest else None
    elif address.count(":") == 1:
        host, port = address.split(":")
    else:
        host, port = address, None

    if not host or any(c.isspace() or not c.isprintable() for c in host):
        raise ValueError(f"invalid host in address '{address}'")

    if port is None:
        return host, None

    # "host:" has an empty port
    if not port.isdigit():
        raise ValueError(f"invalid port in address '{address}'")

    port = int(port)
    if not is_port(port):
        raise ValueError(f"invalid port in address '{address}'")

    return host, port


def api_endpoint(address, default_port=API_SERVER_PORT):
    """Return ``host:port``, appending default_port to bare hosts"""
    host, port = split_host_port(address)
    if port is None:
        port = default_port

    if valid_ipv6(host):
        return f"[{host}]:{port}"

    return f"{host}:{port}"
