"""Pure stage computation for the evaluator.

Given a switch, its account's last check-in, the current time, and the
[CascadeConfig][deadman.services.common.configs.CascadeConfig], decide the
highest stage the switch qualifies for. No I/O, so every threshold rule is
testable in isolation.
"""

from __future__ import annotations

import math

from deadman.models import REMINDER_STATES, SECONDS_PER_DAY, Switch, SwitchState
from deadman.services.common.configs import CascadeConfig


_SECONDS_PER_HOUR = 3600


def stage_thresholds(inactivity_days: int, cascade: CascadeConfig) -> list[tuple[SwitchState, int]]:
    """Seconds of inactivity at which each stage is reached, in increasing order.

    For ``inactivity_days=60`` and the default cascade::

        [(REMINDED_1, 30d), (REMINDED_2, 45d), (REMINDED_3, 52.2d), (TRIGGERED, 60d)]
    """
    interval = inactivity_days * SECONDS_PER_DAY
    stages = [
        (state, math.ceil(fraction * interval))
        for state, fraction in zip(REMINDER_STATES, cascade.reminder_fractions, strict=False)
    ]
    trigger = math.ceil(
        cascade.trigger_fraction * interval + cascade.trigger_margin_hours * _SECONDS_PER_HOUR
    )
    stages.append((SwitchState.TRIGGERED, trigger))
    return stages


def trigger_at(switch: Switch, last_check_in_at: int, cascade: CascadeConfig) -> int:
    """Unix time at which *switch* triggers if nobody checks in."""
    if switch.trigger.fixed_time is not None:
        return switch.trigger.fixed_time
    assert switch.trigger.inactivity_days is not None  # noqa: S101  # Exactly one trigger field is set
    return last_check_in_at + stage_thresholds(switch.trigger.inactivity_days, cascade)[-1][1]


def target_state(
    switch: Switch, last_check_in_at: int, now: int, cascade: CascadeConfig
) -> SwitchState:
    """Highest stage *switch* qualifies for at *now*.

    Fixed-time switches have no reminder stages: they are ``ACTIVE`` until
    ``now >= fixed_time`` and ``TRIGGERED`` from then on. Interval switches
    compare the seconds since ``last_check_in_at`` with
    [stage_thresholds()][deadman.services.evaluator.utils.stage_thresholds].

    The result only says which stage the clock points at; whether that is
    an advance depends on the switch's persisted state.
    """
    if switch.trigger.fixed_time is not None:
        return SwitchState.TRIGGERED if now >= switch.trigger.fixed_time else SwitchState.ACTIVE

    assert switch.trigger.inactivity_days is not None  # noqa: S101  # Exactly one trigger field is set
    elapsed = now - last_check_in_at
    target = SwitchState.ACTIVE
    for state, threshold in stage_thresholds(switch.trigger.inactivity_days, cascade):
        if elapsed >= threshold:
            target = state
    return target
