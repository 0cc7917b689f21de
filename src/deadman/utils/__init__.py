"""Key loading and HTTP helpers.

The utils layer depends only on third-party libraries and the standard
library; it has no imports from ``deadman.core`` or ``deadman.services``.

Attributes:
    keys: Service signing key loading from environment variables.
    http: Bounded JSON POST used by webhook sinks and notifiers.
"""
