"""Evaluator service package.

Re-exports all public symbols::

    from deadman.services.evaluator import Evaluator, EvaluatorConfig
"""

from .configs import EvaluatorConfig, InactivityCheckerConfig
from .service import Evaluator, InactivityChecker
from .utils import stage_thresholds, target_state, trigger_at


__all__ = [
    "Evaluator",
    "EvaluatorConfig",
    "InactivityChecker",
    "InactivityCheckerConfig",
    "stage_thresholds",
    "target_state",
    "trigger_at",
]
