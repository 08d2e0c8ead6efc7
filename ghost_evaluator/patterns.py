"""
Pattern Evaluation
Static pattern registry, predictors and the PatternEvaluator

Every pattern is a pure function of the run history up to block N that
predicts the direction of block N+1 (or None for "no signal").

Continuation:      SameDir, AP5, ST       - the current run continues
Alternation:       ZZ, 2A2 .. 6A6, OZ, PP - the current run breaks
Anti-alternation:  AntiZZ, Anti2A2 ..     - opposite of the base member

AP5, OZ, PP and ST describe a setup only. Whether they may signal at all
is a lifecycle question (they trade only while ACTIVE).
"""
import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from .blocks import Block, Direction
from .config import (
    PatternFamily,
    PatternId,
    PayoffConfig,
    OPPOSITE_PATTERNS,
    XAX_RUN_LENGTHS,
    ALL_PATTERNS,
    family_of,
    parse_pattern,
)
from .runs import RunHistory

log = logging.getLogger(__name__)

# Minimum alternating singles (current run included) before ZZ signals
ZZ_MIN_SINGLES = 3

Predictor = Callable[[RunHistory], Optional[Direction]]


# =============================================================================
# PREDICTORS
# =============================================================================

def predict_same_direction(history: RunHistory) -> Optional[Direction]:
    """Bet the direction of the current run"""
    return history.current_direction


def zz_setup(history: RunHistory) -> bool:
    """
    Indicator run (>= 2) followed by at least 3 alternating singles,
    the current run being the latest single.

    Example: G G R G R -> lengths [2, 1, 1, 1] -> setup holds

    Once the trailing window holds nothing but singles the indicator has
    scrolled out; the alternation is still treated as established.
    """
    if history.current_length != 1:
        return False

    singles = history.trailing_singles()
    if singles < ZZ_MIN_SINGLES:
        return False

    if singles < len(history.lengths):
        # Run just before the singles is the indicator (length >= 2 by construction)
        return True
    return history.window_truncated


def predict_zz(history: RunHistory) -> Optional[Direction]:
    if not zz_setup(history):
        return None
    return history.current_direction.opposite


def _xax_predictor(run_length: int) -> Predictor:
    def predict(history: RunHistory) -> Optional[Direction]:
        if history.current_length != run_length:
            return None
        return history.current_direction.opposite

    predict.__name__ = f"predict_{run_length}a{run_length}"
    return predict


def _previous_length(history: RunHistory) -> int:
    return history.lengths[-2] if len(history.lengths) >= 2 else 0


def predict_ap5(history: RunHistory) -> Optional[Direction]:
    """First block of a flip after a 3+ run: play its 2nd block"""
    if history.current_length != 1 or _previous_length(history) < 3:
        return None
    return history.current_direction


def predict_oz(history: RunHistory) -> Optional[Direction]:
    """Single opposite block: play the flip back"""
    if history.current_length != 1 or _previous_length(history) == 0:
        return None
    return history.directions[-2]


def predict_pp(history: RunHistory) -> Optional[Direction]:
    """1-2 rhythm, double then single: play the flip back"""
    if history.current_length != 1 or _previous_length(history) != 2:
        return None
    return history.directions[-2]


def predict_st(history: RunHistory) -> Optional[Direction]:
    """2-2 rhythm, double then flip: play the 2nd block of the new double"""
    if history.current_length != 1 or _previous_length(history) != 2:
        return None
    return history.current_direction


def _anti(base: Predictor) -> Predictor:
    def predict(history: RunHistory) -> Optional[Direction]:
        direction = base(history)
        return None if direction is None else direction.opposite

    predict.__name__ = f"anti_{base.__name__}"
    return predict


# =============================================================================
# REGISTRY
# =============================================================================

@dataclass(frozen=True)
class PatternSpec:
    """Registration entry for one pattern"""
    pattern: PatternId
    family: PatternFamily
    predictor: Predictor
    opposite: Optional[PatternId] = None

    @property
    def name(self) -> str:
        return self.pattern.value


def _build_registry() -> Dict[PatternId, PatternSpec]:
    predictors: Dict[PatternId, Predictor] = {
        PatternId.SAME_DIR: predict_same_direction,
        PatternId.ZZ: predict_zz,
        PatternId.AP5: predict_ap5,
        PatternId.OZ: predict_oz,
        PatternId.PP: predict_pp,
        PatternId.ST: predict_st,
    }
    for pattern, run_length in XAX_RUN_LENGTHS.items():
        predictors[pattern] = _xax_predictor(run_length)

    # Anti members mirror their base
    for pattern in ALL_PATTERNS:
        if family_of(pattern) == PatternFamily.ANTI_ALTERNATION:
            predictors[pattern] = _anti(predictors[OPPOSITE_PATTERNS[pattern]])

    return {
        pattern: PatternSpec(
            pattern=pattern,
            family=family_of(pattern),
            predictor=predictors[pattern],
            opposite=OPPOSITE_PATTERNS.get(pattern),
        )
        for pattern in ALL_PATTERNS
    }


PATTERN_REGISTRY: Dict[PatternId, PatternSpec] = _build_registry()


def setup_holds(pattern: PatternId, history: RunHistory) -> bool:
    """True when the pattern's setup condition holds on this history"""
    if history.is_empty:
        return False
    return PATTERN_REGISTRY[pattern].predictor(history) is not None


# =============================================================================
# PAYOFF
# =============================================================================

class PayoffFunction:
    """pnl = +/- stake * magnitude ** exponent (monotonic in magnitude)"""

    def __init__(self, config: Optional[PayoffConfig] = None):
        self.config = config or PayoffConfig()

    def __call__(self, magnitude: float, is_win: bool) -> float:
        value = self.config.stake * (magnitude ** self.config.exponent)
        return value if is_win else -value


# =============================================================================
# EVALUATION
# =============================================================================

@dataclass(frozen=True)
class PatternEvaluationResult:
    """Outcome of one pattern's prediction against one block"""
    pattern: PatternId
    family: PatternFamily
    signal_block_index: int
    eval_block_index: int
    predicted_direction: Direction
    actual_direction: Direction
    is_win: bool
    magnitude_at_eval: float
    pnl: float
    was_bet: bool
    run_length_at_signal: int = 0

    @property
    def loss_amount(self) -> float:
        return abs(self.pnl) if not self.is_win else 0.0

    def to_dict(self) -> Dict:
        return {
            'pattern': self.pattern.value,
            'family': self.family.value,
            'signal_block_index': self.signal_block_index,
            'eval_block_index': self.eval_block_index,
            'predicted_direction': self.predicted_direction.value,
            'actual_direction': self.actual_direction.value,
            'is_win': self.is_win,
            'magnitude_at_eval': self.magnitude_at_eval,
            'pnl': self.pnl,
            'was_bet': self.was_bet,
            'run_length_at_signal': self.run_length_at_signal,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "PatternEvaluationResult":
        pattern = parse_pattern(data['pattern'])
        return cls(
            pattern=pattern,
            family=family_of(pattern),
            signal_block_index=int(data['signal_block_index']),
            eval_block_index=int(data['eval_block_index']),
            predicted_direction=Direction.parse(data['predicted_direction']),
            actual_direction=Direction.parse(data['actual_direction']),
            is_win=bool(data['is_win']),
            magnitude_at_eval=float(data['magnitude_at_eval']),
            pnl=float(data['pnl']),
            was_bet=bool(data['was_bet']),
            run_length_at_signal=int(data.get('run_length_at_signal', 0)),
        )


class PatternEvaluator:
    """
    Scores pattern predictions against realized blocks

    Stateless apart from configuration: never touches lifecycle state.
    """

    def __init__(
        self,
        payoff_config: Optional[PayoffConfig] = None,
        enabled_patterns: Optional[List[PatternId]] = None
    ):
        self.payoff = PayoffFunction(payoff_config)
        patterns = enabled_patterns if enabled_patterns is not None else ALL_PATTERNS
        self.patterns: List[PatternId] = [parse_pattern(p) for p in patterns]

    def predict(self, pattern: PatternId, history: RunHistory) -> Optional[Direction]:
        if history.is_empty:
            return None
        return PATTERN_REGISTRY[pattern].predictor(history)

    def signals(self, history: RunHistory) -> Dict[PatternId, Direction]:
        """Predictions of every enabled pattern that has a signal"""
        signals = {}
        for pattern in self.patterns:
            direction = self.predict(pattern, history)
            if direction is not None:
                signals[pattern] = direction
        return signals

    def evaluate(
        self,
        pattern: PatternId,
        history: RunHistory,
        candidate_block: Block,
        was_bet: bool = False,
        predicted_direction: Optional[Direction] = None
    ) -> Optional[PatternEvaluationResult]:
        """
        Evaluate one pattern against the block that follows its signal

        Args:
            pattern: Pattern to evaluate
            history: Run history up to (not including) candidate_block
            candidate_block: The realized block
            was_bet: Whether a real bet was placed on this signal
            predicted_direction: Precomputed prediction (skips the predictor)

        Returns:
            PatternEvaluationResult, or None when the pattern had no signal
        """
        if predicted_direction is None:
            predicted_direction = self.predict(pattern, history)
            if predicted_direction is None:
                return None

        is_win = predicted_direction == candidate_block.direction
        pnl = self.payoff(candidate_block.magnitude, is_win)

        result = PatternEvaluationResult(
            pattern=pattern,
            family=family_of(pattern),
            signal_block_index=candidate_block.index - 1,
            eval_block_index=candidate_block.index,
            predicted_direction=predicted_direction,
            actual_direction=candidate_block.direction,
            is_win=is_win,
            magnitude_at_eval=candidate_block.magnitude,
            pnl=pnl,
            was_bet=was_bet,
            run_length_at_signal=history.current_length,
        )
        log.debug(
            "%s block %d: predicted %s, actual %s -> %s %.1f%s",
            pattern.value, candidate_block.index, predicted_direction.value,
            candidate_block.direction.value, 'WIN' if is_win else 'LOSS', pnl,
            '' if was_bet else ' (not bet)',
        )
        return result
