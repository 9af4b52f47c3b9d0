"""API Routes"""

from . import inbox

__all__ = ["inbox"]
