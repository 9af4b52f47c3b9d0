"""Application ports (interfaces) used by the application layer."""

from .environment_port import NetworkReachabilityProvider, PowerStateProvider
from .paper_source_port import NullPaperSource, PaperSourcePort

__all__ = [
    "NetworkReachabilityProvider",
    "NullPaperSource",
    "PaperSourcePort",
    "PowerStateProvider",
]
