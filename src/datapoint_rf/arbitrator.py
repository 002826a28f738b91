#!/usr/bin/env python3
"""DataPoint RF - a DataPoint (DP) protocol decoder & arbitrator.

Decide, once per device, whether it is ZCL-native, DP-native (Tuya), or hybrid.

Many devices advertise clusters they do not functionally implement, so the decision is
made empirically: each successfully parsed unit of traffic is a 'hit' for its protocol
family, and when the arbitration window expires the hit counts decide the mode.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Final, TypedDict

from . import exceptions as exc
from .const import DECISION_WINDOW_SECS, ArbitrationMode, ProtocolFamily

#
# NOTE: All debug flags should be False for deployment to end-users
_DBG_MAINTAIN_STATE_CHAIN: Final[bool] = False  # maintain Context._prev_state

_LOGGER = logging.getLogger(__name__)


class DeviceProtocolStateT(TypedDict):
    zcl_hits: int
    tuya_hits: int
    decided: bool
    mode: str
    forced_active: bool


#


class ArbitratorContext:
    """The context is the device. It is initiated in the Undecided state."""

    _state: ArbStateBase = None  # type: ignore[assignment]

    def __init__(
        self,
        device_id: str,
        *,
        forced_active: bool = False,
        loop: asyncio.AbstractEventLoop | None = None,
        on_decided: Callable[[ArbitratorContext], None] | None = None,
    ) -> None:
        self._device_id = device_id
        self._loop = loop
        self._on_decided = on_decided

        self._zcl_hits = 0
        self._tuya_hits = 0
        self._forced_active = forced_active

        self._window: float = DECISION_WINDOW_SECS
        self._timer_handle: asyncio.TimerHandle | None = None

        self.set_state(IsUndecided)

    def __repr__(self) -> str:
        return (
            f"{self._device_id}: {self.state!r} "
            f"(zcl={self._zcl_hits}, tuya={self._tuya_hits}, forced={self._forced_active})"
        )

    def __str__(self) -> str:
        return f"{self._device_id}: {self.state}"

    def set_state(self, state: type[ArbStateBase]) -> None:
        """Transition the State of the Context."""

        if _DBG_MAINTAIN_STATE_CHAIN:  # HACK for debugging
            prev_state = self._state

        self._state = state(self)

        if _DBG_MAINTAIN_STATE_CHAIN:  # HACK for debugging
            setattr(self._state, "_prev_state", prev_state)  # noqa: B010

    @property
    def state(self) -> ArbStateBase:
        """Return the State (mode) of the Context."""
        return self._state

    @property
    def device_id(self) -> str:
        return self._device_id

    @property
    def mode(self) -> ArbitrationMode:
        return self._state._attr_mode

    @property
    def decided(self) -> bool:
        """Return True if the (one-shot) decision has been made."""
        return self._state._is_decided

    @property
    def forced_active(self) -> bool:
        return self._forced_active

    @property
    def zcl_hits(self) -> int:
        return self._zcl_hits

    @property
    def tuya_hits(self) -> int:
        return self._tuya_hits

    @property
    def status(self) -> DeviceProtocolStateT:
        """Return the protocol state (an undecided device is 'not yet determined')."""
        return {
            "zcl_hits": self._zcl_hits,
            "tuya_hits": self._tuya_hits,
            "decided": self.decided,
            "mode": str(self.mode),
            "forced_active": self._forced_active,
        }

    def set_forced_active(self, value: bool) -> None:
        """Keep the DP path live even absent any observed traffic (an override)."""
        self._forced_active = bool(value)

    def register_hit(self, family: ProtocolFamily) -> None:
        """Count a successfully parsed unit of traffic for its protocol family."""
        self._state.register_hit(ProtocolFamily(family))

    def accepts(self, family: ProtocolFamily) -> bool:
        """Return True if traffic of this family should be routed (not ignored)."""
        return self._state.accepts(ProtocolFamily(family))

    def decide(self) -> ArbitrationMode:
        """Apply the decision rule (once), and return the resulting mode."""

        prev_mode = self.mode
        self._state.decide()

        if self.mode != prev_mode:
            _LOGGER.info(
                "%s: Protocol decided as %s (from %s, zcl=%s, tuya=%s, forced=%s)",
                self._device_id,
                self.mode,
                prev_mode,
                self._zcl_hits,
                self._tuya_hits,
                self._forced_active,
            )
            self._cancel_timer()
            if self._on_decided:
                self._on_decided(self)

        return self.mode

    def restore(self, mode: ArbitrationMode | str) -> None:
        """Rehydrate a previously persisted decision (the hit counters start at zero)."""

        if not isinstance(self._state, IsUndecided):
            raise exc.ArbitrationFsmError(f"{self!r}: can't restore a decided device")
        self.set_state(STATE_BY_MODE[ArbitrationMode(mode)])

    def schedule_decision(self, window: float | None = None) -> None:
        """Start the single-shot timer of the arbitration window (if not started)."""

        if self.decided or self._timer_handle is not None:
            return
        if window is not None:
            self._window = window

        loop = self._loop or asyncio.get_running_loop()
        self._timer_handle = loop.call_later(self._window, self._handle_window_expired)

    def _handle_window_expired(self) -> None:
        self._timer_handle = None
        self.decide()

        if not self.decided:  # no traffic & not forced: will retry
            _LOGGER.debug(
                f"{self}: No traffic after {self._window} secs, protocol is not yet "
                "determined (will retry)"
            )
            self.schedule_decision()

    def _cancel_timer(self) -> None:
        if self._timer_handle is not None:
            self._timer_handle.cancel()
            self._timer_handle = None

    def cancel(self) -> None:
        """Cancel the arbitration timer (e.g. the device is detached)."""
        self._cancel_timer()


#


class ArbStateBase:
    _attr_mode: ArbitrationMode
    _is_decided: bool = True

    def __init__(self, context: ArbitratorContext) -> None:
        self._context = context
        _LOGGER.debug(f"{context.device_id}: Changing state to: {self}")

    def __repr__(self) -> str:
        return f"{self.__class__.__name__} ({self._attr_mode})"

    def __str__(self) -> str:
        return self.__class__.__name__

    def register_hit(self, family: ProtocolFamily) -> None:
        """Count the hit, unless already decided (and not forced active)."""

        if self._is_decided and not self._context._forced_active:
            return

        if family == ProtocolFamily.TUYA:
            self._context._tuya_hits += 1
        else:
            self._context._zcl_hits += 1

    def accepts(self, family: ProtocolFamily) -> bool:
        return True

    def decide(self) -> None:  # decided states are terminal
        pass


class IsUndecided(ArbStateBase):
    """The arbitration window is open (or there has been no traffic at all)."""

    _attr_mode = ArbitrationMode.UNDECIDED
    _is_decided = False

    def decide(self) -> None:
        """Apply the deterministic rule, based only upon the final counts."""

        ctx = self._context
        zcl, tuya, forced = ctx._zcl_hits, ctx._tuya_hits, ctx._forced_active

        if tuya and not zcl:
            ctx.set_state(IsTuyaOnly)
        elif zcl and not tuya:
            ctx.set_state(IsHybridForced if forced else IsZclOnly)
        elif zcl and tuya:
            ctx.set_state(IsHybrid)
        elif forced:
            ctx.set_state(IsHybridForced)
        # else: remain undecided, there is nothing to decide upon


class IsZclOnly(ArbStateBase):
    """The device is ZCL-native; its DP traffic (if any) is ignored."""

    _attr_mode = ArbitrationMode.ZCL_ONLY

    def accepts(self, family: ProtocolFamily) -> bool:
        return family == ProtocolFamily.ZCL

    def decide(self) -> None:
        """Re-enter as HybridForced, if forced active since this (zero-DP) decision."""
        if self._context._forced_active:
            self._context.set_state(IsHybridForced)


class IsTuyaOnly(ArbStateBase):
    """The device is DP-native; its ZCL traffic (if any) is ignored."""

    _attr_mode = ArbitrationMode.TUYA_ONLY

    def accepts(self, family: ProtocolFamily) -> bool:
        return family == ProtocolFamily.TUYA


class IsHybrid(ArbStateBase):
    """The device has been observed using both protocols."""

    _attr_mode = ArbitrationMode.HYBRID


class IsHybridForced(ArbStateBase):
    """The DP path is kept live by an override, whatever traffic was observed."""

    _attr_mode = ArbitrationMode.HYBRID_FORCED


STATE_BY_MODE: Final[dict[ArbitrationMode, type[ArbStateBase]]] = {
    ArbitrationMode.UNDECIDED: IsUndecided,
    ArbitrationMode.ZCL_ONLY: IsZclOnly,
    ArbitrationMode.TUYA_ONLY: IsTuyaOnly,
    ArbitrationMode.HYBRID: IsHybrid,
    ArbitrationMode.HYBRID_FORCED: IsHybridForced,
}
