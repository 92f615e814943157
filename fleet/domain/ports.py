"""
Host port allocation for fleet instances.
"""

from __future__ import annotations

import errno
import logging
import socket
from collections.abc import Callable, Iterable

from fleet.config.settings import PORT_SCAN_RANGE
from fleet.domain.types import PortPair
from fleet.errors import PortExhaustion

logger = logging.getLogger("fleet")


def is_port_bindable(port: int, host: str = "0.0.0.0") -> bool:
    """
    Check whether a TCP port can be bound on the host right now.

    A port released by a just-stopped container may still linger in the
    kernel, so the reserved set alone is not enough.

    Args:
        port: TCP port to test
        host: Interface to bind on

    Returns:
        True if bind succeeds, False otherwise
    """
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        try:
            sock.bind((host, port))
        except OSError as e:
            if e.errno not in (errno.EADDRINUSE, errno.EACCES):
                logger.debug(f"Port {port} bind check failed: {e}")
            return False
    return True


class PortAllocator:
    """Finds free host ports by scanning upward from a base port.

    Allocation has no side effects: the caller must bind the returned port
    right away, and two concurrent callers can receive the same port. The
    fleet controller serializes its callers for that reason.
    """

    def __init__(
        self,
        scan_range: int = PORT_SCAN_RANGE,
        is_free: Callable[[int], bool] = is_port_bindable,
    ) -> None:
        self.scan_range = scan_range
        self._is_free = is_free

    def allocate(self, base_port: int, reserved_ports: Iterable[int]) -> int:
        """
        Return the first port >= base_port that is neither reserved nor bound.

        Raises:
            PortExhaustion: If nothing is free in base_port..base_port+scan_range
        """
        reserved = set(reserved_ports)
        limit = base_port + self.scan_range
        for candidate in range(base_port, limit + 1):
            if candidate in reserved:
                continue
            if self._is_free(candidate):
                return candidate
        raise PortExhaustion(base_port, limit)

    def allocate_pair(
        self, display_base: int, vnc_base: int, reserved_ports: Iterable[int]
    ) -> PortPair:
        """Allocate a display port and a VNC port that differ from each other."""
        reserved = set(reserved_ports)
        display_port = self.allocate(display_base, reserved)
        reserved.add(display_port)
        vnc_port = self.allocate(vnc_base, reserved)
        return PortPair(display_port, vnc_port)
