#!/usr/bin/env python3
"""DataPoint RF - a DataPoint (DP) protocol decoder & arbitrator.

Sequence the outbound DP queries of a device, with spacing and a finite retry budget.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from collections.abc import Awaitable, Callable, Iterable
from typing import Final

from datapoint_tx.const import DEFAULT_GAP_BETWEEN_QUERIES
from datapoint_tx.frame import build_dp_query
from datapoint_tx.retry import RetryPolicy

#
# NOTE: All debug flags should be False for deployment to end-users
_DBG_DISABLE_RETRIES: Final[bool] = False

_LOGGER = logging.getLogger(__name__)


SendQueryT = Callable[[bytes], Awaitable[None]]


class DpQuerySequencer:
    """Send one query per DP, spaced by a gap, retrying each as per the policy.

    A query is answered only when the device reports the DP (see note_report), so a
    send that succeeds, but is not answered within the timeout, is retried.

    A DP whose retries are exhausted is marked as awaiting a passive report (i.e. the
    device will report it when it wakes), and is not queried again until it does.
    """

    def __init__(
        self,
        device_id: str,
        send: SendQueryT,
        *,
        policy: RetryPolicy | None = None,
        gap: float = DEFAULT_GAP_BETWEEN_QUERIES,
    ) -> None:
        self._device_id = device_id
        self._send = send
        self._policy = policy or RetryPolicy()
        self._gap = gap

        self._queue: deque[int] = deque()
        self._awaiting: set[int] = set()
        self._reported: dict[int, asyncio.Event] = {}  # the DP queries in flight
        self._seq = 0
        self._task: asyncio.Task[None] | None = None

    def __repr__(self) -> str:
        return (
            f"DpQuerySequencer({self._device_id}, pending={list(self._queue)}, "
            f"awaiting={sorted(self._awaiting)})"
        )

    @property
    def awaiting_report(self) -> frozenset[int]:
        """Return the DPs that are awaiting a passive report."""
        return frozenset(self._awaiting)

    @property
    def pending(self) -> tuple[int, ...]:
        return tuple(self._queue)

    def request(self, dp_ids: Iterable[int]) -> asyncio.Task[None] | None:
        """Enqueue a query for each DP (unless already queued), and start sending."""

        for dp_id in dp_ids:
            if dp_id in self._queue or dp_id in self._reported:  # queued, or in flight
                continue
            if dp_id in self._awaiting:
                _LOGGER.debug(
                    "%s: DP%03d is awaiting a passive report, not queried",
                    self._device_id,
                    dp_id,
                )
                continue
            self._queue.append(dp_id)

        if self._queue and (self._task is None or self._task.done()):
            self._task = asyncio.create_task(
                self._run(), name=f"{self.__class__.__name__}({self._device_id})"
            )
        return self._task

    def note_report(self, dp_id: int) -> None:
        """Note a report of a DP (solicited or not), so it need not be queried."""

        if event := self._reported.get(dp_id):
            event.set()
        if dp_id in self._awaiting:
            _LOGGER.info("%s: DP%03d was reported passively", self._device_id, dp_id)
            self._awaiting.discard(dp_id)
        try:
            self._queue.remove(dp_id)
        except ValueError:
            pass

    def cancel(self) -> None:
        """Cancel any queries in progress (e.g. the device is detached)."""

        self._queue.clear()
        if self._task and not self._task.done():
            self._task.cancel()
        self._task = None

    def _next_seq(self) -> int:
        self._seq = (self._seq + 1) & 0xFFFF
        return self._seq

    async def _run(self) -> None:
        while self._queue:
            dp_id = self._queue.popleft()
            await self._query(dp_id)
            if self._queue:
                await asyncio.sleep(self._gap)

    async def _query(self, dp_id: int) -> None:
        """Query a DP until it is reported, retrying (if need be) as per the policy."""

        max_retries = 0 if _DBG_DISABLE_RETRIES else self._policy.max_retries

        for attempt in range(max_retries + 1):
            reported = self._reported[dp_id] = asyncio.Event()
            frame = build_dp_query(self._next_seq(), dp_id)
            try:
                await asyncio.wait_for(
                    self._send_and_wait(frame, reported), timeout=self._policy.timeout
                )
            except TimeoutError:
                _LOGGER.debug(
                    "%s: DP%03d query unanswered (attempt %s of %s)",
                    self._device_id,
                    dp_id,
                    attempt + 1,
                    max_retries + 1,
                )
            except Exception as err:  # an external collaborator
                _LOGGER.debug(
                    "%s: DP%03d query failed (attempt %s of %s): %r",
                    self._device_id,
                    dp_id,
                    attempt + 1,
                    max_retries + 1,
                    err,
                )
            else:
                return
            finally:
                self._reported.pop(dp_id, None)

            if attempt < max_retries:
                await asyncio.sleep(self._policy.delay(attempt))

        _LOGGER.warning(
            "%s: DP%03d query failed after %s retries, awaiting a passive report",
            self._device_id,
            dp_id,
            max_retries,
        )
        self._awaiting.add(dp_id)

    async def _send_and_wait(self, frame: bytes, reported: asyncio.Event) -> None:
        await self._send(frame)
        await reported.wait()
