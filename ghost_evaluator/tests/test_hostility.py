"""
Unit Tests: HostilityDetector
"""
import pytest

from ghost_evaluator.config import HostilityConfig, PatternId
from ghost_evaluator.hostility import (
    HostilityAction,
    HostilityDetector,
    HostilityLevel,
    IndicatorType,
)


@pytest.fixture
def detector():
    return HostilityDetector()


def feed(detector, *results):
    """One result per block"""
    actions = []
    for result in results:
        actions.append(detector.process_block(result.eval_block_index, [result]))
    return actions


def indicator_types(detector):
    return [i.type for i in detector.state.indicators]


@pytest.fixture
def paused_detector(detector, make_result):
    """Three 85% losses on 2A2: 1 + 1 + (3 + 1 + 3) = 9 -> PAUSE at block 3"""
    actions = feed(
        detector,
        make_result("2A2", False, 1, magnitude=85),
        make_result("2A2", False, 2, magnitude=85),
        make_result("2A2", False, 3, magnitude=85),
    )
    assert actions == [None, None, HostilityAction.PAUSE]
    return detector


class TestExemption:

    @pytest.mark.parametrize("level", list(HostilityLevel))
    @pytest.mark.parametrize("confidence", [0, 30, 59.9, 60, 100])
    def test_zz_and_anti_zz_always_trade(self, detector, level, confidence):
        detector.state.level = level
        assert detector.can_pattern_trade(PatternId.ZZ, confidence)
        assert detector.can_pattern_trade(PatternId.ANTI_ZZ, confidence)

    def test_other_patterns_blocked_when_paused(self, detector):
        for level in (HostilityLevel.PAUSE, HostilityLevel.EXTENDED_PAUSE):
            detector.state.level = level
            assert not detector.can_pattern_trade(PatternId.SAME_DIR, 95)
            assert not detector.can_pattern_trade(PatternId.XAX_2, 95)

    def test_normal_allows_everything(self, detector):
        assert detector.can_pattern_trade(PatternId.ANTI_XAX_5, 0)


class TestIndicators:

    def test_caution_scenario(self, detector, make_result):
        """Two >= 80% losses (+1 each) and a 3-loss cascade (+3) -> CAUTION"""
        feed(
            detector,
            make_result("2A2", False, 1, magnitude=85),
            make_result("2A2", False, 2, magnitude=90),
            make_result("2A2", False, 3, magnitude=30),
        )
        assert detector.score == 5
        assert detector.level == HostilityLevel.CAUTION
        assert indicator_types(detector) == [
            IndicatorType.HIGH_PCT, IndicatorType.HIGH_PCT, IndicatorType.CASCADE,
        ]
        assert not detector.can_pattern_trade(PatternId.XAX_3, 55)
        assert detector.can_pattern_trade(PatternId.XAX_3, 65)

    def test_cascade_needs_three(self, detector, make_result):
        feed(
            detector,
            make_result("3A3", False, 1),
            make_result("3A3", False, 2),
        )
        assert detector.score == 0
        feed(detector, make_result("3A3", False, 3))
        assert detector.score == 3

    def test_win_breaks_cascade(self, detector, make_result):
        feed(
            detector,
            make_result("3A3", False, 1),
            make_result("3A3", False, 2),
            make_result("3A3", True, 3),
            make_result("3A3", False, 4),
        )
        assert IndicatorType.CASCADE not in indicator_types(detector)

    def test_cross_pattern_with_suppression(self, detector, make_result):
        feed(
            detector,
            make_result("2A2", False, 1),
            make_result("3A3", False, 2),
            make_result("4A4", False, 3),
        )
        assert indicator_types(detector) == [IndicatorType.CROSS_PATTERN]
        assert detector.score == 2

    def test_opposite_sync(self, detector, make_result):
        feed(
            detector,
            make_result("2A2", False, 1),
            make_result("Anti2A2", False, 3),
        )
        types = indicator_types(detector)
        assert IndicatorType.OPPOSITE_SYNC in types
        assert IndicatorType.CROSS_PATTERN in types
        assert detector.score == 6

    def test_opposite_sync_needs_sequence(self, detector, make_result):
        detector.process_block(1, [
            make_result("2A2", False, 1),
            make_result("Anti2A2", False, 1),
        ])
        assert IndicatorType.OPPOSITE_SYNC not in indicator_types(detector)

    def test_opposite_sync_window(self, detector, make_result):
        feed(
            detector,
            make_result("ZZ", False, 1),
            make_result("AntiZZ", False, 7),
        )
        assert IndicatorType.OPPOSITE_SYNC not in indicator_types(detector)

    def test_high_pct_cluster(self, detector, make_result):
        feed(
            detector,
            make_result("2A2", False, 1, magnitude=72),
            make_result("2A2", True, 2, magnitude=10),
            make_result("2A2", False, 3, magnitude=75),
            make_result("2A2", False, 4, magnitude=71),
        )
        assert indicator_types(detector) == [IndicatorType.HIGH_PCT_CLUSTER]

    def test_wr_collapse_cooldown(self, detector, make_result):
        feed(detector, *[make_result("5A5", False, i, magnitude=10) for i in range(1, 15)])
        assert indicator_types(detector).count(IndicatorType.WR_COLLAPSE) == 1

    def test_unbet_results_not_scored(self, detector, make_result):
        feed(detector, *[make_result("2A2", False, i, magnitude=95, was_bet=False) for i in range(1, 5)])
        assert detector.score == 0

    def test_score_unbet_switch(self, make_result):
        detector = HostilityDetector(HostilityConfig(score_unbet_results=True))
        feed(detector, make_result("2A2", False, 1, magnitude=95, was_bet=False))
        assert detector.score == 1

    def test_indicator_retention(self, make_result):
        detector = HostilityDetector(HostilityConfig(max_indicators=10))
        feed(detector, *[make_result("2A2", False, i, magnitude=95) for i in range(1, 40)])
        assert len(detector.state.indicators) == 10


class TestDecay:

    def test_win_decay(self, detector, make_result):
        feed(detector, *[make_result("2A2", False, i, magnitude=85) for i in (1, 2)])
        assert detector.score == 2
        feed(detector, make_result("2A2", True, 3))
        assert detector.score == 0

    def test_idle_decay(self, detector, make_result):
        feed(detector, make_result("2A2", False, 1, magnitude=85))
        detector.process_block(2, [])
        assert detector.score == 0.5
        detector.process_block(3, [])
        detector.process_block(4, [])
        assert detector.score == 0


class TestPauseAndResume:

    def test_pause(self, paused_detector):
        assert paused_detector.score == 9
        assert paused_detector.level == HostilityLevel.PAUSE
        assert paused_detector.state.pause_blocks_remaining == 5
        assert not paused_detector.state.recovery_signal_seen

    def test_escalation_extends_pause(self, paused_detector, make_result):
        action = paused_detector.process_block(4, [make_result("2A2", False, 4, magnitude=85)])
        assert action is None
        assert paused_detector.score == 13
        assert paused_detector.level == HostilityLevel.EXTENDED_PAUSE
        assert paused_detector.state.pause_blocks_remaining == 10

    def test_pause_is_latched(self, paused_detector):
        for index in range(4, 12):
            paused_detector.process_block(index, [])
        assert paused_detector.score < 8
        assert paused_detector.is_paused

    def test_low_score_without_recovery_stays_paused(self, paused_detector):
        for index in range(4, 18):
            assert paused_detector.process_block(index, []) is None
        assert paused_detector.score == 2
        assert paused_detector.state.pause_blocks_remaining == 0
        assert not paused_detector.can_resume()
        assert paused_detector.is_paused

    def test_recovery_with_high_score_stays_paused(self, paused_detector, make_result):
        action = paused_detector.process_block(4, [make_result("ZZ", True, 4)])
        assert action is None
        assert paused_detector.state.recovery_signal_seen
        assert paused_detector.score == 7
        assert paused_detector.is_paused

    def test_resume_needs_score_and_recovery(self, paused_detector, make_result):
        for index in range(4, 18):
            paused_detector.process_block(index, [])

        action = paused_detector.process_block(18, [make_result("ZZ", True, 18)])
        assert action == HostilityAction.RESUME
        assert paused_detector.level == HostilityLevel.NORMAL
        assert not paused_detector.state.recovery_signal_seen

    def test_resume_waits_for_duration(self, paused_detector, make_result):
        action = paused_detector.process_block(4, [
            make_result("ZZ", True, 4), make_result("AntiZZ", True, 4), make_result("2A2", True, 4),
        ])
        assert paused_detector.score == 3
        assert action is None
        assert paused_detector.state.pause_blocks_remaining == 4

    def test_continuation_recovery_signal(self, paused_detector, make_result):
        paused_detector.process_block(4, [make_result("SameDir", True, 4, was_bet=False)])
        assert not paused_detector.state.recovery_signal_seen
        paused_detector.process_block(5, [make_result("SameDir", True, 5, was_bet=False)])
        assert paused_detector.state.recovery_signal_seen

    def test_win_rate_recovery_signal(self, paused_detector, make_result):
        results = [make_result("4A4", i % 2 == 0, i, was_bet=False) for i in range(4, 9)]
        feed(paused_detector, *results)
        assert paused_detector.state.recovery_signal_seen


class TestState:

    def test_snapshot_is_independent(self, paused_detector, make_result):
        snapshot = paused_detector.snapshot()
        count = len(snapshot.indicators)
        paused_detector.process_block(4, [make_result("2A2", False, 4, magnitude=85)])
        assert len(snapshot.indicators) == count
        assert snapshot.level == HostilityLevel.PAUSE

    def test_reset(self, paused_detector):
        paused_detector.reset()
        assert paused_detector.score == 0
        assert paused_detector.level == HostilityLevel.NORMAL
        assert paused_detector.state.indicators == []

    def test_export_state(self, paused_detector):
        data = paused_detector.export_state()
        assert data['level'] == 'PAUSE'
        assert data['pause_count'] == 1
        assert data['consecutive_losses'] == {'2A2': 3}
        assert data['indicators'][-1]['type'] == 'HIGH_PCT_CLUSTER'

    def test_sessions_are_isolated(self, paused_detector):
        other = HostilityDetector()
        assert other.score == 0
        assert paused_detector.score == 9
