"""Tests for adaptive tier scheduling."""

from dataclasses import dataclass

from fakes import ManualClock
from stockwatch.services.priority_scheduler import PriorityScheduler, PriorityStore, Tier


@dataclass
class Target:
    id: int
    last_known_available: bool | None = False


def make_scheduler(clock: ManualClock | None = None) -> PriorityScheduler:
    return PriorityScheduler(tier_unit_seconds=60, clock=clock or ManualClock())


class TestIsDue:
    def test_new_target_is_due_immediately(self):
        scheduler = make_scheduler()
        assert scheduler.is_due(Target(id=1))

    def test_new_target_starts_medium(self):
        scheduler = make_scheduler()
        assert scheduler.state_for(1).tier == Tier.MEDIUM

    def test_not_due_right_after_check(self):
        clock = ManualClock()
        scheduler = make_scheduler(clock)
        target = Target(id=1)
        scheduler.record_result(target, False)
        assert not scheduler.is_due(target)

    def test_due_after_tier_interval(self):
        clock = ManualClock()
        scheduler = make_scheduler(clock)
        target = Target(id=1)
        scheduler.record_result(target, False)  # MEDIUM, 3 minutes
        clock.advance(179)
        assert not scheduler.is_due(target)
        clock.advance(1)
        assert scheduler.is_due(target)

    def test_high_tier_interval_is_one_unit(self):
        clock = ManualClock()
        scheduler = make_scheduler(clock)
        target = Target(id=1)
        scheduler.record_result(target, True)
        clock.advance(60)
        assert scheduler.is_due(target)

    def test_tier_unit_scales_intervals(self):
        scheduler = PriorityScheduler(tier_unit_seconds=1, clock=ManualClock())
        assert scheduler.interval_for(Tier.COLD) == 10
        assert scheduler.interval_for(Tier.LOW) == 5


class TestRecordResult:
    def test_available_sets_high_and_resets_counter(self):
        scheduler = make_scheduler()
        target = Target(id=1)
        for _ in range(15):
            scheduler.record_result(target, False)
        state = scheduler.record_result(target, True)
        assert state.tier == Tier.HIGH
        assert state.consecutive_unavailable == 0

    def test_ten_unavailable_moves_to_low(self):
        scheduler = make_scheduler()
        target = Target(id=1)
        for _ in range(9):
            state = scheduler.record_result(target, False)
        assert state.tier == Tier.MEDIUM
        state = scheduler.record_result(target, False)
        assert state.tier == Tier.LOW

    def test_twenty_unavailable_moves_to_cold(self):
        scheduler = make_scheduler()
        target = Target(id=1)
        for _ in range(19):
            state = scheduler.record_result(target, False)
        assert state.tier == Tier.LOW
        state = scheduler.record_result(target, False)
        assert state.tier == Tier.COLD

    def test_scenario_medium_low_then_high(self):
        scheduler = make_scheduler()
        target = Target(id=7, last_known_available=False)

        for _ in range(2):
            state = scheduler.record_result(target, False)
        assert state.tier == Tier.MEDIUM
        assert state.flips == 0

        for _ in range(8):
            state = scheduler.record_result(target, False)
        assert state.consecutive_unavailable == 10
        assert state.tier == Tier.LOW

        state = scheduler.record_result(target, True)
        assert state.tier == Tier.HIGH
        assert state.consecutive_unavailable == 0

    def test_flips_counted_against_persisted_value(self):
        scheduler = make_scheduler()
        scheduler.record_result(Target(id=1, last_known_available=False), False)
        scheduler.record_result(Target(id=1, last_known_available=False), True)
        state = scheduler.record_result(Target(id=1, last_known_available=True), False)
        assert state.flips == 2

    def test_no_flip_without_change(self):
        scheduler = make_scheduler()
        target = Target(id=1, last_known_available=True)
        for _ in range(5):
            state = scheduler.record_result(target, True)
        assert state.flips == 0

    def test_volatile_target_stays_medium_while_unavailable(self):
        scheduler = make_scheduler()
        for i in range(5):
            scheduler.record_result(Target(id=1, last_known_available=i % 2 == 0), i % 2 == 1)
        state = scheduler.record_result(Target(id=1, last_known_available=False), False)
        assert state.flips > 3
        assert state.tier == Tier.MEDIUM

    def test_error_stamps_and_counts_as_unavailable(self):
        clock = ManualClock()
        scheduler = make_scheduler(clock)
        target = Target(id=1, last_known_available=True)
        scheduler.record_result(target, True)
        clock.advance(30)
        state = scheduler.record_result(target, False, errored=True)
        assert state.tier == Tier.MEDIUM
        assert state.consecutive_unavailable == 1
        assert state.flips == 0
        assert state.total_checks == 2
        assert state.last_check == clock.now
        assert not scheduler.is_due(target)

    def test_repeated_errors_decay_to_cold(self):
        scheduler = make_scheduler()
        target = Target(id=1)
        for _ in range(10):
            state = scheduler.record_result(target, False, errored=True)
        assert state.tier == Tier.LOW
        for _ in range(10):
            state = scheduler.record_result(target, False, errored=True)
        assert state.tier == Tier.COLD
        assert state.flips == 0

    def test_total_checks_increment(self):
        scheduler = make_scheduler()
        target = Target(id=1)
        for _ in range(3):
            state = scheduler.record_result(target, False)
        assert state.total_checks == 3


class TestForgetAndDistribution:
    def test_forget_resets_state(self):
        scheduler = make_scheduler()
        target = Target(id=1)
        scheduler.record_result(target, True)
        scheduler.forget(1)
        assert scheduler.state_for(1).tier == Tier.MEDIUM
        assert scheduler.is_due(target)

    def test_distribution_counts_unknown_as_medium(self):
        scheduler = make_scheduler()
        scheduler.record_result(Target(id=1), True)
        distribution = scheduler.tier_distribution([1, 2, 3])
        assert distribution == {"high": 1, "medium": 2, "low": 0, "cold": 0}

    def test_store_snapshot_is_a_copy(self):
        store = PriorityStore()
        scheduler = PriorityScheduler(store=store, clock=ManualClock())
        scheduler.record_result(Target(id=1), True)
        snapshot = store.snapshot()
        snapshot[1].tier = Tier.COLD
        assert scheduler.state_for(1).tier == Tier.HIGH
