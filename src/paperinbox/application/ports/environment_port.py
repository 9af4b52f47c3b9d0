"""Power and network status queries consulted before each scheduler cycle."""

from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class PowerStateProvider(Protocol):
    def is_power_constrained(self) -> bool:
        """True when background refresh should yield (e.g. running on battery)."""
        ...


@runtime_checkable
class NetworkReachabilityProvider(Protocol):
    def is_network_available(self) -> bool:
        """True when sources are expected to be reachable."""
        ...
