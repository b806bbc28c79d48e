"""Free-port lookup for the dev server."""

from __future__ import annotations

import errno
import socket

from spadev.models import PortRange


def is_port_available(port: int, host: str = "127.0.0.1") -> bool:
    """Check if a port is available for binding.

    A port counts as taken when something accepts connections on it, or when
    binding it fails on either the IPv4 or the IPv6 loopback address (dev
    servers often bind `localhost`, which may resolve to either).

    Args:
        port: Port number to check
        host: IPv4 host to check on (default: 127.0.0.1)

    Returns:
        True if port is available, False otherwise
    """
    for family, address in ((socket.AF_INET, host), (socket.AF_INET6, "::1")):
        try:
            with socket.socket(family, socket.SOCK_STREAM) as sock:
                sock.settimeout(0.2)
                if sock.connect_ex((address, port)) == 0:
                    return False
        except OSError:
            pass

    for family, address in ((socket.AF_INET, host), (socket.AF_INET6, "::1")):
        try:
            with socket.socket(family, socket.SOCK_STREAM) as sock:
                # Don't set SO_REUSEADDR - we want to know if it's actually in use
                sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 0)
                sock.bind((address, port))
        except OSError as e:
            # No IPv6 on this machine: nothing can be listening there.
            if family == socket.AF_INET6 and e.errno in (errno.EAFNOSUPPORT, errno.EADDRNOTAVAIL):
                continue
            return False

    return True


def find_available_port(port_range: PortRange, host: str = "127.0.0.1") -> int | None:
    """Find an available port in the given (inclusive) range.

    Returns:
        Available port number or None if no port is available
    """
    for port in range(port_range.start, port_range.end + 1):
        if is_port_available(port, host):
            return port
    return None
