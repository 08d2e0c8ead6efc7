"""
Hostility Detection
Session-wide score of synchronized cross-pattern failure

Indicators (default weights):
1. CASCADE:          3+ consecutive losses on one pattern        +3
2. CROSS_PATTERN:    2+ patterns lose within 3 blocks            +2
3. OPPOSITE_SYNC:    pattern and its Anti- lose in sequence      +4
4. HIGH_PCT:         single loss at >= 80%                       +1
5. HIGH_PCT_CLUSTER: 3+ losses >= 70% within 5 blocks            +3
6. WR_COLLAPSE:      rolling 10-result win rate < 30%            +2

Levels: NORMAL < 5 <= CAUTION < 8 <= PAUSE (5 blocks) < 11 <= EXTENDED_PAUSE (10 blocks)

Resume needs score < 4 AND a recovery signal, after the pause duration.
ZZ/AntiZZ are exempt and always trade.
"""
import logging
from collections import deque
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Deque, Dict, List, Optional, Sequence, Tuple

from .config import HostilityConfig, PatternId, opposite_of
from .patterns import PatternEvaluationResult

log = logging.getLogger(__name__)

# Opposite-sync pairs remembered for duplicate suppression
MAX_OPPOSITE_FAILURES = 20


class HostilityLevel(Enum):
    NORMAL = "NORMAL"
    CAUTION = "CAUTION"
    PAUSE = "PAUSE"
    EXTENDED_PAUSE = "EXTENDED_PAUSE"

    @property
    def is_paused(self) -> bool:
        return self in (HostilityLevel.PAUSE, HostilityLevel.EXTENDED_PAUSE)


class IndicatorType(Enum):
    CASCADE = "CASCADE"
    CROSS_PATTERN = "CROSS_PATTERN"
    OPPOSITE_SYNC = "OPPOSITE_SYNC"
    HIGH_PCT = "HIGH_PCT"
    HIGH_PCT_CLUSTER = "HIGH_PCT_CLUSTER"
    WR_COLLAPSE = "WR_COLLAPSE"


class HostilityAction(Enum):
    """Directive for the session after a block"""
    PAUSE = "PAUSE"
    RESUME = "RESUME"


@dataclass(frozen=True)
class IndicatorEvent:
    type: IndicatorType
    weight: float
    block_index: int
    patterns: Tuple[PatternId, ...]
    details: str = ""

    def to_dict(self) -> Dict:
        return {
            'type': self.type.value,
            'weight': self.weight,
            'block_index': self.block_index,
            'patterns': [p.value for p in self.patterns],
            'details': self.details,
        }


@dataclass
class HostilityState:
    score: float = 0.0
    level: HostilityLevel = HostilityLevel.NORMAL
    indicators: List[IndicatorEvent] = field(default_factory=list)
    pause_blocks_remaining: int = 0
    recovery_signal_seen: bool = False
    last_block_index: int = -1

    def snapshot(self) -> "HostilityState":
        return replace(self, indicators=list(self.indicators))

    def to_dict(self) -> Dict:
        return {
            'score': self.score,
            'level': self.level.value,
            'indicators': [i.to_dict() for i in self.indicators],
            'pause_blocks_remaining': self.pause_blocks_remaining,
            'recovery_signal_seen': self.recovery_signal_seen,
            'last_block_index': self.last_block_index,
        }


@dataclass(frozen=True)
class OppositeFailure:
    first_pattern: PatternId
    opposite_pattern: PatternId
    first_failure_block: int
    opposite_failure_block: int


class HostilityDetector:
    """
    Explicitly constructed per session; reads evaluation results only

    Never mutates lifecycle state. process_block() returns a
    HostilityAction that the session turns into pause/resume directives.
    """

    def __init__(self, config: Optional[HostilityConfig] = None):
        self.config = config or HostilityConfig()
        self.reset()

    def reset(self):
        cfg = self.config
        self.state = HostilityState()
        self._indicators: Deque[IndicatorEvent] = deque(maxlen=cfg.max_indicators)
        self._recent: Deque[PatternEvaluationResult] = deque(maxlen=cfg.triggers.wr_collapse_window)
        self._consecutive_losses: Dict[PatternId, int] = {}
        self._losses_by_block: Dict[int, List[PatternId]] = {}
        self._opposite_failures: Deque[OppositeFailure] = deque(maxlen=MAX_OPPOSITE_FAILURES)

        # Recovery tracking sees every evaluation, bet or not
        self._recovery_window: Deque[bool] = deque(maxlen=cfg.triggers.recovery_window)
        self._continuation_wins = 0

        self._pause_started_this_block = False
        self.pause_count = 0

    # =========================================================================
    # QUERIES
    # =========================================================================

    @property
    def score(self) -> float:
        return self.state.score

    @property
    def level(self) -> HostilityLevel:
        return self.state.level

    @property
    def is_paused(self) -> bool:
        return self.state.level.is_paused

    def is_exempt(self, pattern: PatternId) -> bool:
        return pattern in self.config.exempt_patterns

    def can_pattern_trade(self, pattern: PatternId, confidence: float) -> bool:
        if self.is_exempt(pattern):
            return True

        level = self.state.level
        if level == HostilityLevel.NORMAL:
            return True
        if level == HostilityLevel.CAUTION:
            return confidence >= self.config.caution_min_confidence
        return False

    def can_resume(self) -> bool:
        """Pause elapsed, score below threshold AND a recovery signal seen"""
        state = self.state
        if not state.level.is_paused:
            return False
        if state.pause_blocks_remaining > 0:
            return False
        return state.score < self.config.resume_score_threshold and state.recovery_signal_seen

    # =========================================================================
    # UPDATE
    # =========================================================================

    def process_block(
        self,
        block_index: int,
        results: Sequence[PatternEvaluationResult]
    ) -> Optional[HostilityAction]:
        """
        Update after every pattern has been evaluated for block_index

        Args:
            block_index: Index of the evaluated block
            results: All evaluation results for the block

        Returns:
            HostilityAction.PAUSE when a pause starts, RESUME when one ends
        """
        was_paused = self.is_paused
        self._pause_started_this_block = False

        for result in results:
            self._track_recovery(result)

        scored = [r for r in results if r.was_bet or self.config.score_unbet_results]
        for result in scored:
            self._recent.append(result)
            if result.is_win:
                self._decay(self.config.decay_per_win)
                self._consecutive_losses[result.pattern] = 0
            else:
                self._process_loss(result)
            self._update_level()

        if not scored:
            self._decay(self.config.decay_per_idle_block)
            self._update_level()

        if self.state.pause_blocks_remaining > 0 and not self._pause_started_this_block:
            self.state.pause_blocks_remaining -= 1
            if self.state.pause_blocks_remaining == 0:
                log.info("Hostility pause duration complete at block %d, checking resume", block_index)

        self.state.last_block_index = block_index
        self._cleanup()

        if self.is_paused and not was_paused:
            return HostilityAction.PAUSE
        if was_paused and self.can_resume():
            self._resume(block_index)
            return HostilityAction.RESUME
        return None

    def _process_loss(self, result: PatternEvaluationResult) -> None:
        pattern = result.pattern
        self._consecutive_losses[pattern] = self._consecutive_losses.get(pattern, 0) + 1
        self._losses_by_block.setdefault(result.eval_block_index, []).append(pattern)

        self._check_cascade(result)
        self._check_cross_pattern(result)
        self._check_opposite_sync(result)
        self._check_high_pct(result)
        self._check_high_pct_cluster(result)
        self._check_wr_collapse(result)

    # =========================================================================
    # INDICATORS
    # =========================================================================

    def _check_cascade(self, result: PatternEvaluationResult) -> None:
        losses = self._consecutive_losses.get(result.pattern, 0)
        if losses >= self.config.triggers.cascade_losses:
            self._add_indicator(
                IndicatorType.CASCADE, self.config.weights.cascade, result.eval_block_index,
                (result.pattern,), f"{result.pattern.value} has {losses} consecutive losses",
            )

    def _check_cross_pattern(self, result: PatternEvaluationResult) -> None:
        window = self.config.triggers.cross_pattern_window
        block_index = result.eval_block_index

        patterns = []
        for index in range(block_index, max(block_index - window, -1), -1):
            for pattern in self._losses_by_block.get(index, []):
                if pattern not in patterns:
                    patterns.append(pattern)

        if len(patterns) < self.config.triggers.cross_pattern_min_patterns:
            return
        if self._recent_indicator(IndicatorType.CROSS_PATTERN, block_index, window):
            return
        self._add_indicator(
            IndicatorType.CROSS_PATTERN, self.config.weights.cross_pattern, block_index,
            tuple(patterns),
            f"{len(patterns)} patterns lost in {window} blocks: "
            + ", ".join(p.value for p in patterns),
        )

    def _check_opposite_sync(self, result: PatternEvaluationResult) -> None:
        opposite = opposite_of(result.pattern)
        if opposite is None:
            return

        block_index = result.eval_block_index
        window = self.config.triggers.opposite_sync_window
        earlier = next((
            r for r in self._recent
            if not r.is_win and r.pattern == opposite
            and 0 < block_index - r.eval_block_index <= window
        ), None)
        if earlier is None:
            return

        already_logged = any(
            f.first_pattern == opposite and f.opposite_pattern == result.pattern
            and f.opposite_failure_block == block_index
            for f in self._opposite_failures
        )
        if already_logged:
            return

        self._opposite_failures.append(OppositeFailure(
            first_pattern=opposite,
            opposite_pattern=result.pattern,
            first_failure_block=earlier.eval_block_index,
            opposite_failure_block=block_index,
        ))
        self._add_indicator(
            IndicatorType.OPPOSITE_SYNC, self.config.weights.opposite_sync, block_index,
            (opposite, result.pattern),
            f"{opposite.value} lost at block {earlier.eval_block_index}, "
            f"then {result.pattern.value} also lost",
        )

    def _check_high_pct(self, result: PatternEvaluationResult) -> None:
        threshold = self.config.triggers.high_pct_threshold
        if result.magnitude_at_eval >= threshold:
            self._add_indicator(
                IndicatorType.HIGH_PCT, self.config.weights.high_pct, result.eval_block_index,
                (result.pattern,),
                f"{result.pattern.value} lost at {result.magnitude_at_eval:.0f}% (>= {threshold:.0f}%)",
            )

    def _check_high_pct_cluster(self, result: PatternEvaluationResult) -> None:
        tr = self.config.triggers
        block_index = result.eval_block_index
        cluster = [
            r for r in self._recent
            if not r.is_win and r.magnitude_at_eval >= tr.high_pct_cluster_threshold
            and block_index - r.eval_block_index < tr.high_pct_cluster_window
        ]
        if len(cluster) < tr.high_pct_cluster_count:
            return
        if self._recent_indicator(IndicatorType.HIGH_PCT_CLUSTER, block_index, tr.high_pct_cluster_window):
            return
        self._add_indicator(
            IndicatorType.HIGH_PCT_CLUSTER, self.config.weights.high_pct_cluster, block_index,
            tuple(r.pattern for r in cluster),
            f"{len(cluster)} losses >= {tr.high_pct_cluster_threshold:.0f}% "
            f"in {tr.high_pct_cluster_window} blocks",
        )

    def _check_wr_collapse(self, result: PatternEvaluationResult) -> None:
        tr = self.config.triggers
        if len(self._recent) < tr.wr_collapse_window:
            return

        wins = sum(1 for r in self._recent if r.is_win)
        win_rate = wins / len(self._recent) * 100
        if win_rate >= tr.wr_collapse_threshold:
            return
        if self._recent_indicator(IndicatorType.WR_COLLAPSE, result.eval_block_index, tr.wr_collapse_cooldown):
            return
        self._add_indicator(
            IndicatorType.WR_COLLAPSE, self.config.weights.wr_collapse, result.eval_block_index,
            (), f"Win rate collapsed to {win_rate:.1f}% over last {len(self._recent)} results",
        )

    def _recent_indicator(self, indicator_type: IndicatorType, block_index: int, window: int) -> bool:
        return any(
            i.type == indicator_type and block_index - i.block_index < window
            for i in self._indicators
        )

    def _add_indicator(
        self,
        indicator_type: IndicatorType,
        weight: float,
        block_index: int,
        patterns: Tuple[PatternId, ...],
        details: str
    ) -> None:
        event = IndicatorEvent(indicator_type, weight, block_index, patterns, details)
        self._indicators.append(event)
        self.state.score += weight
        log.info("Hostility +%s %s: %s (score=%.1f)", weight, indicator_type.value, details, self.state.score)

    # =========================================================================
    # RECOVERY
    # =========================================================================

    def _track_recovery(self, result: PatternEvaluationResult) -> None:
        tr = self.config.triggers
        self._recovery_window.append(result.is_win)

        if result.pattern == PatternId.SAME_DIR:
            self._continuation_wins = self._continuation_wins + 1 if result.is_win else 0

        reason = None
        if result.is_win and self.is_exempt(result.pattern):
            reason = f"{result.pattern.value} win"
        elif result.pattern == PatternId.SAME_DIR and self._continuation_wins >= tr.continuation_recovery_wins:
            reason = f"{result.pattern.value} {self._continuation_wins} consecutive wins"
        elif len(self._recovery_window) >= tr.recovery_window:
            win_rate = sum(self._recovery_window) / len(self._recovery_window) * 100
            if win_rate > tr.recovery_win_rate:
                reason = f"{len(self._recovery_window)}-result win rate {win_rate:.0f}%"

        if reason and not self.state.recovery_signal_seen:
            self.state.recovery_signal_seen = True
            log.info("Hostility recovery signal at block %d: %s", result.eval_block_index, reason)

    # =========================================================================
    # LEVEL / SCORE
    # =========================================================================

    def _decay(self, amount: float) -> None:
        self.state.score = max(0.0, self.state.score - amount)

    def _score_level(self) -> HostilityLevel:
        cfg = self.config
        score = self.state.score
        if score >= cfg.extended_pause_level:
            return HostilityLevel.EXTENDED_PAUSE
        if score >= cfg.pause_level:
            return HostilityLevel.PAUSE
        if score >= cfg.caution_level:
            return HostilityLevel.CAUTION
        return HostilityLevel.NORMAL

    def _update_level(self) -> None:
        state = self.state
        target = self._score_level()

        # Pauses are latched until resume
        if state.level.is_paused:
            if target == HostilityLevel.EXTENDED_PAUSE and state.level == HostilityLevel.PAUSE:
                state.level = target
                state.pause_blocks_remaining = max(
                    state.pause_blocks_remaining, self.config.extended_pause_blocks
                )
                state.recovery_signal_seen = False
                self._pause_started_this_block = True
                log.warning(
                    "Hostility escalated to EXTENDED_PAUSE (score=%.1f, %d blocks)",
                    state.score, state.pause_blocks_remaining,
                )
            return

        if target.is_paused:
            state.level = target
            state.pause_blocks_remaining = (
                self.config.extended_pause_blocks if target == HostilityLevel.EXTENDED_PAUSE
                else self.config.pause_blocks
            )
            state.recovery_signal_seen = False
            self._pause_started_this_block = True
            self.pause_count += 1
            log.warning(
                "Hostility %s triggered (score=%.1f, %d blocks)",
                target.value, state.score, state.pause_blocks_remaining,
            )
            return

        if target != state.level:
            log.info("Hostility level %s -> %s (score=%.1f)", state.level.value, target.value, state.score)
        state.level = target

    def _resume(self, block_index: int) -> None:
        state = self.state
        log.info(
            "Hostility resume at block %d (score=%.1f, recovery signal seen)",
            block_index, state.score,
        )
        state.recovery_signal_seen = False
        state.pause_blocks_remaining = 0
        state.level = self._score_level()

    def _cleanup(self) -> None:
        keep = self.config.loss_block_retention
        for index in sorted(self._losses_by_block, reverse=True)[keep:]:
            del self._losses_by_block[index]
        self.state.indicators = list(self._indicators)

    # =========================================================================
    # EXPORT
    # =========================================================================

    def snapshot(self) -> HostilityState:
        return self.state.snapshot()

    def export_state(self) -> Dict:
        data = self.state.to_dict()
        data.update({
            'pause_count': self.pause_count,
            'consecutive_losses': {p.value: n for p, n in self._consecutive_losses.items()},
            'losses_by_block': {
                str(index): [p.value for p in patterns]
                for index, patterns in sorted(self._losses_by_block.items())
            },
            'opposite_failures': [
                {
                    'first_pattern': f.first_pattern.value,
                    'opposite_pattern': f.opposite_pattern.value,
                    'first_failure_block': f.first_failure_block,
                    'opposite_failure_block': f.opposite_failure_block,
                }
                for f in self._opposite_failures
            ],
        })
        return data
