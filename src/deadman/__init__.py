r"""deadman -- dead man's switch inactivity detection and release engine.

Users arm switches holding an encrypted payload. If they stop checking in
(or a fixed date passes), a reminder cascade runs and, failing a check-in,
the payload is retrieved from a replicated relay store and handed to a
delivery sink exactly once.

Imports flow strictly downward:

```text
              services         Evaluator, release, registrar, cleanup
             /   |   \
          core relay  utils    Pool/repository/base service, relay
             \   |   /         clients and content store, helpers
              models           Pure frozen dataclasses (zero I/O)
```

Note:
    Import from the subpackages::

        from deadman.models import Switch, Trigger
        from deadman.core import Repository
        from deadman.services import Evaluator
"""

from importlib.metadata import version as _get_version


__version__ = _get_version("deadman")
