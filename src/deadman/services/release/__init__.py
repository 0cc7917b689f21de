"""Release coordinator package.

Re-exports the public symbols::

    from deadman.services.release import ReleaseConfig, ReleaseCoordinator
"""

from .configs import ReleaseConfig
from .service import ReleaseCoordinator


__all__ = [
    "ReleaseConfig",
    "ReleaseCoordinator",
]
