"""Periodic passes and the write path of the dead man's switch.

Services are the top layer of the diamond DAG, depending on
[deadman.core][deadman.core], [deadman.relay][deadman.relay],
[deadman.utils][deadman.utils], and [deadman.models][deadman.models].
Periodic services extend [BaseService][deadman.core.base_service.BaseService]
and implement ``async def run()`` for one pass.

```text
Evaluator (30 min) --TRIGGERED--> ReleaseCoordinator --> delivery sink
InactivityChecker (hourly, interval switches only)
Cleanup (daily)
SwitchRegistrar (called by the web layer, not scheduled)
```

Attributes:
    Evaluator: Advances open switches through the reminder cascade and
        hands triggered ones to the release coordinator.
    InactivityChecker: Evaluator restricted to inactivity-based switches.
    Cleanup: Deletes expired one-time codes and old log rows.
    ReleaseCoordinator: Retrieve, deliver, and mark ``SENT`` exactly once.
    SwitchRegistrar: Create, edit, and cancel switches; check-ins; relay
        configuration.

See Also:
    [common][deadman.services.common]: Shared configs, types, delivery
        boundaries, and read queries.
"""

from .cleanup import Cleanup, CleanupConfig
from .evaluator import Evaluator, EvaluatorConfig, InactivityChecker, InactivityCheckerConfig
from .registrar import RegistrarConfig, SwitchRegistrar
from .release import ReleaseConfig, ReleaseCoordinator


__all__ = [
    "Cleanup",
    "CleanupConfig",
    "Evaluator",
    "EvaluatorConfig",
    "InactivityChecker",
    "InactivityCheckerConfig",
    "RegistrarConfig",
    "ReleaseConfig",
    "ReleaseCoordinator",
    "SwitchRegistrar",
]
