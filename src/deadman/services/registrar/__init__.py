"""Switch registrar package.

Re-exports all public symbols::

    from deadman.services.registrar import RegistrarConfig, SwitchRegistrar
"""

from .configs import RegistrarConfig
from .service import SwitchRegistrar


__all__ = ["RegistrarConfig", "SwitchRegistrar"]
