#!/usr/bin/env python3
"""DataPoint RF - Retry policies for outbound DP & time requests."""

from __future__ import annotations

import random
from collections.abc import Callable

from .const import (
    BATTERY_MAX_RETRIES,
    BATTERY_SEND_TIMEOUT,
    MAINS_MAX_RETRIES,
    MAINS_SEND_TIMEOUT,
    RETRY_BASE_DELAY,
    RETRY_JITTER,
    RETRY_LIMIT_MAX,
    RETRY_MAX_DELAY,
    PowerSource,
)


class RetryPolicy:
    """A container for the retry attributes of a device class.

    The total budget is always finite (at most five retries), so that a device that
    never responds settles into awaiting a passive report.
    """

    def __init__(
        self,
        *,
        max_retries: int | None = MAINS_MAX_RETRIES,
        timeout: float | None = MAINS_SEND_TIMEOUT,
        base_delay: float | None = RETRY_BASE_DELAY,
        max_delay: float | None = RETRY_MAX_DELAY,
        jitter: bool = True,
    ) -> None:
        """Create a RetryPolicy instance."""

        max_retries = MAINS_MAX_RETRIES if max_retries is None else max_retries
        self._max_retries = min(max(max_retries, 0), RETRY_LIMIT_MAX)
        self._timeout = timeout or MAINS_SEND_TIMEOUT
        self._base_delay = base_delay or RETRY_BASE_DELAY
        self._max_delay = min(max(max_delay or RETRY_MAX_DELAY, 30.0), 60.0)
        self._jitter = jitter

    def __repr__(self) -> str:
        return (
            f"RetryPolicy(max_retries={self._max_retries}, timeout={self._timeout}, "
            f"max_delay={self._max_delay})"
        )

    @classmethod
    def for_power_source(cls, power_source: PowerSource | str) -> RetryPolicy:
        """Return the policy for a device class.

        Battery (sleepy) devices get fewer retries & a shorter timeout, to avoid burning
        airtime on a device that is asleep.
        """
        if PowerSource(power_source) == PowerSource.BATTERY:
            return cls(max_retries=BATTERY_MAX_RETRIES, timeout=BATTERY_SEND_TIMEOUT)
        return cls(max_retries=MAINS_MAX_RETRIES, timeout=MAINS_SEND_TIMEOUT)

    @property
    def max_retries(self) -> int:
        return self._max_retries

    @property
    def timeout(self) -> float:
        return self._timeout

    @property
    def max_delay(self) -> float:
        return self._max_delay

    def delay(self, attempt: int, rand: Callable[[], float] = random.random) -> float:
        """Return the backoff (secs) after a failed attempt (0-indexed), with jitter.

        The delay doubles with each attempt (+/- 25% jitter), capped at max_delay.
        """

        delay = min(self._base_delay * 2**attempt, self._max_delay)
        if self._jitter:
            delay += (rand() * 2 - 1) * delay * RETRY_JITTER
        return min(delay, self._max_delay)
