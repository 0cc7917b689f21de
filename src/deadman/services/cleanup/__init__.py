"""Cleanup service package.

Re-exports all public symbols::

    from deadman.services.cleanup import Cleanup, CleanupConfig
"""

from .configs import CleanupConfig
from .service import Cleanup


__all__ = ["Cleanup", "CleanupConfig"]
