"""Adaptive per-target polling priority.

Each target carries a tier that sets how often it is checked:

    HIGH   1 unit   currently available, may sell out quickly
    MEDIUM 3 units  default, and for historically volatile targets
    LOW    5 units  10+ consecutive unavailable results
    COLD  10 units  20+ consecutive unavailable results

One unit is ``tier_unit_seconds`` (a minute by default). State lives in memory
only and is rebuilt from defaults on restart: a target seen for the first time
starts at MEDIUM with its last check backdated so it is due immediately.
"""

import enum
import logging
import threading
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, replace
from typing import Protocol

from stockwatch.config import (
    COLD_TIER_THRESHOLD,
    LOW_TIER_THRESHOLD,
    TIER_INTERVAL_UNITS,
    VOLATILE_FLIP_THRESHOLD,
)

logger = logging.getLogger(__name__)


class Tier(str, enum.Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    COLD = "cold"


class ScheduledTarget(Protocol):
    id: int
    last_known_available: bool | None


@dataclass
class PriorityState:
    tier: Tier = Tier.MEDIUM
    last_check: float = 0.0
    consecutive_unavailable: int = 0
    total_checks: int = 0
    flips: int = 0


class PriorityStore:
    """Lock-guarded map of target id to PriorityState."""

    def __init__(self):
        self._states: dict[int, PriorityState] = {}
        self._lock = threading.Lock()

    def get_or_create(self, target_id: int, factory: Callable[[], PriorityState]) -> PriorityState:
        with self._lock:
            state = self._states.get(target_id)
            if state is None:
                state = factory()
                self._states[target_id] = state
            return state

    def get(self, target_id: int) -> PriorityState | None:
        with self._lock:
            return self._states.get(target_id)

    def discard(self, target_id: int) -> None:
        with self._lock:
            self._states.pop(target_id, None)

    def snapshot(self) -> dict[int, PriorityState]:
        with self._lock:
            return {target_id: replace(state) for target_id, state in self._states.items()}

    def __len__(self) -> int:
        with self._lock:
            return len(self._states)


class PriorityScheduler:
    def __init__(
        self,
        store: PriorityStore | None = None,
        tier_unit_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.store = store if store is not None else PriorityStore()
        self.tier_unit_seconds = tier_unit_seconds
        self._clock = clock

    def interval_for(self, tier: Tier) -> float:
        return TIER_INTERVAL_UNITS[tier.value] * self.tier_unit_seconds

    def state_for(self, target_id: int) -> PriorityState:
        return self.store.get_or_create(target_id, self._initial_state)

    def _initial_state(self) -> PriorityState:
        longest = max(TIER_INTERVAL_UNITS.values()) * self.tier_unit_seconds
        return PriorityState(tier=Tier.MEDIUM, last_check=self._clock() - longest - 1.0)

    def is_due(self, target: ScheduledTarget) -> bool:
        state = self.state_for(target.id)
        return self._clock() >= state.last_check + self.interval_for(state.tier)

    def record_result(self, target: ScheduledTarget, available: bool, errored: bool = False) -> PriorityState:
        """Stamp the check and retune the tier.

        An errored check counts as unavailable, so a target that keeps failing
        decays to LOW and COLD like one that is out of stock. It never counts
        as a flip. Flips are counted against the target's persisted
        availability, not against in-memory state.
        """
        state = self.state_for(target.id)
        state.last_check = self._clock()
        state.total_checks += 1

        if errored:
            available = False

        previous_tier = state.tier
        if (
            not errored
            and target.last_known_available is not None
            and available != target.last_known_available
        ):
            state.flips += 1

        if available:
            state.consecutive_unavailable = 0
            state.tier = Tier.HIGH
        else:
            state.consecutive_unavailable += 1
            if state.consecutive_unavailable >= COLD_TIER_THRESHOLD:
                state.tier = Tier.COLD
            elif state.consecutive_unavailable >= LOW_TIER_THRESHOLD:
                state.tier = Tier.LOW
            elif state.flips > VOLATILE_FLIP_THRESHOLD:
                # Volatile targets stay moderately watched while unavailable
                state.tier = Tier.MEDIUM
            else:
                state.tier = Tier.MEDIUM

        if state.tier != previous_tier:
            logger.info(
                f"Target {target.id} moved {previous_tier.value} -> {state.tier.value}",
                extra={"target_id": target.id, "tier": state.tier.value},
            )
        return state

    def forget(self, target_id: int) -> None:
        self.store.discard(target_id)

    def tier_distribution(self, target_ids: Iterable[int] | None = None) -> dict[str, int]:
        """Count targets per tier. Ids never seen count as MEDIUM."""
        states = self.store.snapshot()
        ids = states.keys() if target_ids is None else target_ids
        counts = {tier.value: 0 for tier in Tier}
        for target_id in ids:
            state = states.get(target_id)
            counts[(state.tier if state else Tier.MEDIUM).value] += 1
        return counts
