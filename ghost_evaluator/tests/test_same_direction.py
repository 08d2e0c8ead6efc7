"""
Unit Tests: SameDirectionManager

Covers RunProfit activation, the high-magnitude reversal pause and the
three cross-family channels (resume trigger, decay credit, formation
reversal), plus the isolation guarantee for every other peer result.
"""
import numpy as np
import pytest

from ghost_evaluator.blocks import Block, Direction
from ghost_evaluator.config import (
    ALL_PATTERNS,
    PatternFamily,
    PatternId,
    SameDirectionConfig,
    family_of,
)
from ghost_evaluator.lifecycle import LifecycleStatus, PauseReason, TransitionReason
from ghost_evaluator.runs import Broken, Continuing, Run, RunHistory
from ghost_evaluator.same_direction import SameDirectionManager

UP, DOWN = Direction.UP, Direction.DOWN

# G G G R R G R G: indicator run of 2, then three singles
FORMED = RunHistory(lengths=(3, 2, 1, 1, 1), directions=(UP, DOWN, UP, DOWN, UP))
NOT_FORMED = RunHistory(lengths=(3, 2, 1, 1), directions=(UP, DOWN, UP, DOWN))


def run_break(total_magnitude, break_magnitude, length=3, end_index=49):
    finished = Run(
        direction=Direction.UP,
        length=length,
        start_index=end_index - length + 1,
        end_index=end_index,
        total_magnitude=total_magnitude,
    )
    block = Block(end_index + 1, Direction.DOWN, break_magnitude)
    current = Run(Direction.DOWN, 1, end_index + 1, end_index + 1, 0.0)
    return Broken(finished, block, current)


@pytest.fixture
def manager():
    return SameDirectionManager()


@pytest.fixture
def active(manager):
    manager.observe_run_event(run_break(175.0, 25.0), 50)
    return manager


@pytest.fixture
def paused(active, make_result):
    """Debt of 100, then paused by a 75% reversal"""
    active.record(make_result("SameDir", False, 51, magnitude=25))
    active.record(make_result("SameDir", False, 52, magnitude=25))
    active.record(make_result("SameDir", False, 53, magnitude=75))
    assert active.status == LifecycleStatus.PAUSED
    return active


class TestActivation:

    def test_run_profit_activation(self, manager):
        transition = manager.observe_run_event(run_break(175.0, 25.0), 50)
        assert manager.status == LifecycleStatus.ACTIVE
        assert transition.reason == TransitionReason.RUN_PROFIT_ACTIVATION
        assert transition.block_index == 50

    def test_run_profit_below_threshold(self, manager):
        assert manager.observe_run_event(run_break(160.0, 25.0), 50) is None
        assert manager.status == LifecycleStatus.OBSERVING

    def test_continuing_event_ignored(self, manager):
        run = Run(Direction.UP, 5, 0, 4, 400.0)
        assert manager.observe_run_event(Continuing(run), 4) is None

    def test_own_wins_do_not_activate(self, manager, make_result):
        for i in range(5):
            manager.record(make_result("SameDir", True, i, magnitude=90))
        assert manager.status == LifecycleStatus.OBSERVING

    def test_expiry_scenario(self, manager, make_result):
        """Activate at block 50 on RunProfit 150, three 50-unit losses expire it"""
        manager.observe_run_event(run_break(175.0, 25.0), 50)

        manager.record(make_result("SameDir", False, 51, magnitude=25))
        assert manager.state.accumulated_loss == 50
        manager.record(make_result("SameDir", False, 52, magnitude=25))
        assert manager.state.accumulated_loss == 100
        transitions = manager.record(make_result("SameDir", False, 53, magnitude=25))

        assert manager.state.accumulated_loss == 150
        assert manager.status == LifecycleStatus.EXPIRED
        assert transitions[0].block_index == 53
        assert transitions[0].reason == TransitionReason.DEACTIVATION_THRESHOLD

    def test_expired_does_not_reactivate(self, manager, make_result):
        manager.observe_run_event(run_break(175.0, 25.0), 50)
        manager.record(make_result("SameDir", False, 51, magnitude=60))
        manager.record(make_result("SameDir", False, 52, magnitude=60))
        assert manager.status == LifecycleStatus.EXPIRED
        assert manager.observe_run_event(run_break(300.0, 10.0, end_index=60), 61) is None


class TestHighPctReversal:

    def test_pause_before_booking(self, paused):
        assert paused.state.pause_reason == PauseReason.HIGH_PCT_REVERSAL
        assert paused.state.accumulated_loss == 100
        assert paused.state.imaginary_losses == 1
        assert paused.state.real_losses == 2

    def test_disabled(self, make_result):
        manager = SameDirectionManager(
            same_direction_config=SameDirectionConfig(high_pct_reversal_threshold=None)
        )
        manager.observe_run_event(run_break(175.0, 25.0), 50)
        manager.record(make_result("SameDir", False, 51, magnitude=65))
        assert manager.status == LifecycleStatus.ACTIVE
        assert manager.state.accumulated_loss == 130

    def test_consecutive_losses_pause(self, make_result):
        manager = SameDirectionManager(
            same_direction_config=SameDirectionConfig(pause_after_consecutive_losses=2)
        )
        manager.observe_run_event(run_break(175.0, 25.0), 50)
        manager.record(make_result("SameDir", False, 51, magnitude=10))
        manager.record(make_result("SameDir", False, 52, magnitude=10))
        assert manager.status == LifecycleStatus.PAUSED
        assert manager.state.pause_reason == PauseReason.CONSECUTIVE_LOSSES
        assert manager.state.accumulated_loss == 40


class TestResumeTrigger:

    def test_alternation_loss_resumes(self, paused, make_result):
        transitions = paused.on_peer_result(make_result("ZZ", False, 54))
        assert paused.status == LifecycleStatus.ACTIVE
        assert transitions[0].reason == TransitionReason.ALTERNATION_LOSS_RESUME
        assert paused.last_alternation_family_result.pattern == PatternId.ZZ

    def test_xax_loss_resumes(self, paused, make_result):
        paused.on_peer_result(make_result("4A4", False, 54))
        assert paused.status == LifecycleStatus.ACTIVE

    @pytest.mark.parametrize("pattern", ["AntiZZ", "Anti2A2", "Anti6A6"])
    def test_anti_loss_never_resumes(self, paused, make_result, pattern):
        assert paused.on_peer_result(make_result(pattern, False, 54)) == []
        assert paused.status == LifecycleStatus.PAUSED
        assert paused.last_anti_alternation_family_result.pattern.value == pattern
        assert paused.last_alternation_family_result is None

    def test_alternation_win_does_not_resume(self, paused, make_result):
        paused.on_peer_result(make_result("ZZ", True, 54))
        assert paused.status == LifecycleStatus.PAUSED

    def test_own_imaginary_wins_do_not_resume(self, paused, make_result):
        for i in range(6):
            paused.record(make_result("SameDir", True, 54 + i, magnitude=60))
        assert paused.status == LifecycleStatus.PAUSED

    def test_custom_trigger_set(self, make_result):
        manager = SameDirectionManager(
            same_direction_config=SameDirectionConfig(resume_trigger_patterns=["ZZ"])
        )
        manager.observe_run_event(run_break(175.0, 25.0), 50)
        manager.record(make_result("SameDir", False, 51, magnitude=75))
        manager.on_peer_result(make_result("2A2", False, 52))
        assert manager.status == LifecycleStatus.PAUSED
        manager.on_peer_result(make_result("ZZ", False, 53))
        assert manager.status == LifecycleStatus.ACTIVE

    def test_hostility_pause_not_resumed_by_alternation_loss(self, active, make_result):
        active.pause(PauseReason.HOSTILITY, 51)
        active.on_peer_result(make_result("ZZ", False, 52))
        assert active.status == LifecycleStatus.PAUSED

    def test_bet_requirement_switch(self, make_result):
        manager = SameDirectionManager(
            same_direction_config=SameDirectionConfig(cross_family_requires_bet=True)
        )
        manager.observe_run_event(run_break(175.0, 25.0), 50)
        manager.record(make_result("SameDir", False, 51, magnitude=75))
        manager.on_peer_result(make_result("ZZ", False, 52, was_bet=False))
        assert manager.status == LifecycleStatus.PAUSED
        manager.on_peer_result(make_result("ZZ", False, 53, was_bet=True))
        assert manager.status == LifecycleStatus.ACTIVE


class TestDecayCredit:

    def test_credit_from_xax_win(self, paused, make_result):
        paused.on_peer_result(make_result("2A2", True, 54, magnitude=40))
        assert paused.state.accumulated_loss == 60
        assert paused.decay_credit_count == 1

    def test_credit_floors_at_zero(self, paused, make_result):
        paused.on_peer_result(make_result("3A3", True, 54, magnitude=100))
        assert paused.state.accumulated_loss == 0
        assert paused.decay_credit_total == 100

    def test_zz_win_gives_no_credit(self, paused, make_result):
        paused.on_peer_result(make_result("ZZ", True, 54, magnitude=40))
        assert paused.state.accumulated_loss == 100

    def test_anti_win_gives_no_credit(self, paused, make_result):
        paused.on_peer_result(make_result("Anti2A2", True, 54, magnitude=40))
        assert paused.state.accumulated_loss == 100

    def test_no_credit_while_active(self, active, make_result):
        active.record(make_result("SameDir", False, 51, magnitude=25))
        active.on_peer_result(make_result("2A2", True, 52, magnitude=40))
        assert active.state.accumulated_loss == 50

    def test_custom_fraction(self, make_result):
        manager = SameDirectionManager(
            same_direction_config=SameDirectionConfig(decay_credit_fraction=0.25)
        )
        manager.observe_run_event(run_break(175.0, 25.0), 50)
        manager.record(make_result("SameDir", False, 51, magnitude=50))
        manager.record(make_result("SameDir", False, 52, magnitude=75))
        manager.on_peer_result(make_result("2A2", True, 53, magnitude=40))
        assert manager.state.accumulated_loss == 80

    def test_counter_reset_on_new_pause(self, paused, make_result):
        paused.on_peer_result(make_result("2A2", True, 54, magnitude=10))
        assert paused.decay_credit_count == 1

        paused.on_peer_result(make_result("ZZ", False, 55))
        assert paused.status == LifecycleStatus.ACTIVE
        paused.record(make_result("SameDir", False, 56, magnitude=80))
        assert paused.status == LifecycleStatus.PAUSED
        assert paused.decay_credit_count == 0


    def test_no_credit_from_the_pause_block(self, paused, make_result):
        """The reversal that caused the pause cannot pay down its own debt"""
        paused.on_peer_result(make_result("2A2", True, 53, magnitude=40))
        assert paused.state.accumulated_loss == 100
        assert paused.decay_credit_count == 0

        paused.on_peer_result(make_result("2A2", True, 54, magnitude=40))
        assert paused.state.accumulated_loss == 60


class TestFormationReversal:

    def test_reverses_formation_losses(self, active, make_result):
        active.record(make_result("SameDir", False, 6, magnitude=20, run_length_at_signal=2))
        active.record(make_result("SameDir", False, 7, magnitude=20, run_length_at_signal=1))
        active.record(make_result("SameDir", False, 8, magnitude=20, run_length_at_signal=1))
        assert active.state.accumulated_loss == 120

        # ZZ setup first holds after block 8
        active.observe_formation(FORMED, 8)
        assert active.state.accumulated_loss == 40
        assert active.formation_reversal_count == 1
        assert active.formation_reversed_total == 80

    def test_setup_not_yet_formed(self, active, make_result):
        active.record(make_result("SameDir", False, 7, magnitude=20, run_length_at_signal=1))
        active.observe_formation(NOT_FORMED, 7)
        assert active.state.accumulated_loss == 40
        assert active.formation_reversal_count == 0
        assert active.export_state()['formation_losses'] == [[7, 40.0]]

    def test_at_most_two_losses(self, active, make_result):
        for index in (6, 7, 8):
            active.record(make_result("SameDir", False, index, magnitude=20, run_length_at_signal=1))
        active.observe_formation(FORMED, 8)
        assert active.state.accumulated_loss == 40

    def test_losses_outside_window_kept(self, active, make_result):
        active.record(make_result("SameDir", False, 3, magnitude=20, run_length_at_signal=1))
        active.observe_formation(FORMED, 8)
        assert active.state.accumulated_loss == 40
        assert active.formation_reversal_count == 0

    def test_running_alternation_is_not_a_new_formation(self, active, make_result):
        active.observe_formation(FORMED, 5)  # nothing booked yet
        active.record(make_result("SameDir", False, 6, magnitude=20, run_length_at_signal=1))
        active.observe_formation(FORMED, 6)
        active.record(make_result("SameDir", False, 7, magnitude=20, run_length_at_signal=1))
        active.observe_formation(FORMED, 7)
        assert active.state.accumulated_loss == 80
        assert active.formation_reversal_count == 0

    def test_formation_after_a_gap_is_new(self, active, make_result):
        active.observe_formation(FORMED, 5)
        active.observe_formation(NOT_FORMED, 6)
        active.record(make_result("SameDir", False, 7, magnitude=20, run_length_at_signal=1))
        active.observe_formation(FORMED, 7)
        assert active.state.accumulated_loss == 0
        assert active.formation_reversal_count == 1

    def test_reversal_lands_before_next_loss(self, active, make_result):
        """Reversed on the setup block, so the next loss stays under the threshold"""
        active.record(make_result("SameDir", False, 5, magnitude=20, run_length_at_signal=2))
        active.record(make_result("SameDir", False, 6, magnitude=20, run_length_at_signal=1))
        active.record(make_result("SameDir", False, 7, magnitude=20, run_length_at_signal=1))
        active.observe_formation(FORMED, 7)

        active.record(make_result("SameDir", False, 8, magnitude=15, run_length_at_signal=1))
        assert active.state.accumulated_loss == 70
        assert active.status == LifecycleStatus.ACTIVE

    def test_reversal_capped_at_debt(self, active, make_result):
        active.record(make_result("SameDir", False, 7, magnitude=20, run_length_at_signal=1))
        active.record(make_result("SameDir", True, 8, magnitude=30))
        assert active.state.accumulated_loss == 0
        active.observe_formation(FORMED, 8)
        assert active.state.accumulated_loss == 0

    def test_buffer_cleared_after_reversal(self, active, make_result):
        active.record(make_result("SameDir", False, 7, magnitude=20, run_length_at_signal=1))
        active.observe_formation(FORMED, 8)
        assert active.export_state()['formation_losses'] == []

    def test_not_applied_while_paused(self, active, make_result):
        active.record(make_result("SameDir", False, 7, magnitude=20, run_length_at_signal=1))
        active.pause(PauseReason.HOSTILITY, 8)
        active.observe_formation(FORMED, 8)
        assert active.state.accumulated_loss == 40

    def test_zz_results_do_not_reverse(self, active, make_result):
        active.record(make_result("SameDir", False, 7, magnitude=20, run_length_at_signal=1))
        active.on_peer_result(make_result("ZZ", True, 9))
        assert active.state.accumulated_loss == 40


class TestIsolation:

    def test_peer_results_cannot_touch_debt_outside_channels(self, active, make_result):
        """Alternation and anti results never move an ACTIVE debt"""
        active.record(make_result("SameDir", False, 1, magnitude=30))
        rng = np.random.RandomState(11)
        peers = [
            p for p in ALL_PATTERNS
            if family_of(p) != PatternFamily.CONTINUATION
        ]

        for index in range(2, 200):
            pattern = peers[rng.randint(len(peers))]
            result = make_result(
                pattern, bool(rng.randint(2)), index,
                magnitude=float(rng.randint(1, 100)), was_bet=bool(rng.randint(2)),
            )
            active.on_peer_result(result)
            assert active.state.accumulated_loss == 60
            assert active.state.accumulated_profit == -60
            assert active.status == LifecycleStatus.ACTIVE

    def test_anti_results_never_move_paused_debt(self, paused, make_result):
        for index, pattern in enumerate(["AntiZZ", "Anti2A2", "Anti3A3", "Anti4A4"]):
            paused.on_peer_result(make_result(pattern, index % 2 == 0, 60 + index, magnitude=90))
        assert paused.state.accumulated_loss == 100
        assert paused.status == LifecycleStatus.PAUSED

    def test_own_result_ignored_as_peer(self, active, make_result):
        assert active.on_peer_result(make_result("SameDir", False, 51)) == []
        assert active.state.accumulated_loss == 0
