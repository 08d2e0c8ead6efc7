"""
Pytest Configuration and Shared Fixtures

Provides block and result builders shared by all engine tests.
"""

import pytest
from typing import List, Optional

from ghost_evaluator.blocks import Block, Direction
from ghost_evaluator.config import EngineConfig, family_of, parse_pattern
from ghost_evaluator.patterns import PatternEvaluationResult
from ghost_evaluator.recorder import SessionRecorder
from ghost_evaluator.session import TradingSession
from ghost_evaluator.synthetic_data import SyntheticBlockGenerator


def build_blocks(
    directions: str,
    magnitudes: Optional[List[float]] = None,
    start_index: int = 0
) -> List[Block]:
    """'GGR' -> UP, UP, DOWN blocks (default magnitude 50)"""
    if magnitudes is None:
        magnitudes = [50.0] * len(directions)
    assert len(magnitudes) == len(directions)
    return [
        Block(start_index + i, Direction.parse(d), float(m))
        for i, (d, m) in enumerate(zip(directions, magnitudes))
    ]


def build_result(
    pattern,
    is_win: bool,
    block_index: int,
    magnitude: float = 50.0,
    was_bet: bool = True,
    run_length_at_signal: int = 2,
    stake: float = 2.0
) -> PatternEvaluationResult:
    """Evaluation result with pnl = +/- stake * magnitude"""
    pattern = parse_pattern(pattern)
    pnl = stake * magnitude
    return PatternEvaluationResult(
        pattern=pattern,
        family=family_of(pattern),
        signal_block_index=block_index - 1,
        eval_block_index=block_index,
        predicted_direction=Direction.UP,
        actual_direction=Direction.UP if is_win else Direction.DOWN,
        is_win=is_win,
        magnitude_at_eval=magnitude,
        pnl=pnl if is_win else -pnl,
        was_bet=was_bet,
        run_length_at_signal=run_length_at_signal,
    )


@pytest.fixture
def make_blocks():
    return build_blocks


@pytest.fixture
def make_result():
    return build_result


@pytest.fixture
def config():
    return EngineConfig()


@pytest.fixture
def session():
    return TradingSession()


@pytest.fixture
def synthetic_blocks():
    """500 seeded synthetic blocks with regime switching"""
    return SyntheticBlockGenerator(seed=7).generate_blocks(500)


@pytest.fixture
def recorded_session(synthetic_blocks):
    """Session that has processed the synthetic feed, with its recorder"""
    session = TradingSession()
    recorder = SessionRecorder().attach(session)
    session.run(synthetic_blocks)
    return session, recorder
