"""
Next ping time calculation for group cadences.

`fixed` groups are pinged every 168 / frequency hours. `random` groups follow a
Poisson process: inter-arrival times are drawn from an exponential
distribution with the same mean via inverse transform sampling, floored at one
hour and capped at twice the mean.
"""

import math
import random
from datetime import datetime, timedelta
from typing import Callable, Optional, Union

from app.db.models import IntervalMode

# Returns a float uniformly distributed in [0, 1)
UniformSource = Callable[[], float]

HOURS_PER_WEEK = 7 * 24
MIN_INTERVAL_HOURS = 1.0
MAX_INTERVAL_FACTOR = 2.0
BOOTSTRAP_MIN_HOURS = 1.0
BOOTSTRAP_MAX_HOURS = 5.0
FIXED_BOOTSTRAP_HOURS = 1.0


def _coerce_mode(interval_mode: Union[IntervalMode, str]) -> IntervalMode:
    if isinstance(interval_mode, IntervalMode):
        return interval_mode
    return IntervalMode(str(interval_mode).lower())


def mean_interval_hours(frequency: int) -> float:
    """Expected hours between pings for `frequency` pings per week."""
    if frequency is None or frequency < 1:
        raise ValueError(f"Ping frequency must be at least 1 per week, got {frequency}")
    return HOURS_PER_WEEK / frequency


def exponential_interval_hours(frequency: int, u: float) -> float:
    """
    Inverse transform of an exponential draw: -ln(1 - u) * mean, bounded to
    [1 hour, 2 * mean].
    """
    mean_hours = mean_interval_hours(frequency)
    cap_hours = mean_hours * MAX_INTERVAL_FACTOR

    if u >= 1.0:
        return cap_hours

    hours = max(MIN_INTERVAL_HOURS, -math.log(1.0 - max(u, 0.0)) * mean_hours)
    return min(hours, cap_hours)


def calculate_next_ping_time(
    frequency: int,
    interval_mode: Union[IntervalMode, str],
    now: datetime,
    uniform: Optional[UniformSource] = None,
) -> datetime:
    """
    Calculate when a group should be pinged next.

    Args:
        frequency: Desired pings per 7-day period
        interval_mode: fixed or random spacing
        now: Reference time the interval is added to
        uniform: Source of U(0, 1) draws, `random.random` when omitted

    Returns:
        datetime: now + interval
    """
    mode = _coerce_mode(interval_mode)

    if mode is IntervalMode.FIXED:
        return now + timedelta(hours=mean_interval_hours(frequency))

    draw = (uniform or random.random)()
    return now + timedelta(hours=exponential_interval_hours(frequency, draw))


def initialize_next_ping_time(
    frequency: int,
    interval_mode: Union[IntervalMode, str],
    now: datetime,
    uniform: Optional[UniformSource] = None,
) -> datetime:
    """
    First ping time for a group that has never been scheduled.

    New groups get their first prompt soon instead of waiting a full cycle:
    1-5 hours out for random groups, exactly 1 hour for fixed ones.
    """
    mean_interval_hours(frequency)  # validates frequency
    mode = _coerce_mode(interval_mode)

    if mode is IntervalMode.FIXED:
        return now + timedelta(hours=FIXED_BOOTSTRAP_HOURS)

    draw = min(max((uniform or random.random)(), 0.0), 1.0)
    hours = BOOTSTRAP_MIN_HOURS + draw * (BOOTSTRAP_MAX_HOURS - BOOTSTRAP_MIN_HOURS)
    return now + timedelta(hours=hours)
