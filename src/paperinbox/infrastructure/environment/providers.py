"""Power and network status providers for the scheduler."""

from __future__ import annotations

import logging
import socket

logger = logging.getLogger(__name__)


class StaticPowerState:
    """Fixed power state; servers never run on battery."""

    def __init__(self, constrained: bool = False):
        self.constrained = constrained

    def is_power_constrained(self) -> bool:
        return self.constrained


class StaticReachability:
    def __init__(self, available: bool = True):
        self.available = available

    def is_network_available(self) -> bool:
        return self.available


class SocketReachability:
    """
    Reachability by TCP probe.

    The network counts as available if a connection to ``host:port`` opens
    within ``timeout`` seconds. The check blocks, so the scheduler runs it in
    a worker thread.
    """

    def __init__(self, host: str = "1.1.1.1", port: int = 443, timeout: float = 3.0):
        self.host = host
        self.port = int(port)
        self.timeout = float(timeout)

    def is_network_available(self) -> bool:
        try:
            with socket.create_connection((self.host, self.port), timeout=self.timeout):
                return True
        except OSError as e:
            logger.debug(f"Reachability probe to {self.host}:{self.port} failed: {e}")
            return False
