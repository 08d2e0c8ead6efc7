"""
Ghost Evaluator Pattern Engine

Block-by-block evaluation of directional patterns with per-pattern
lifecycles and a session-wide hostility score.
"""

__version__ = "1.0.0"

from .config import (
    EngineConfig,
    HostilityConfig,
    HostilityTriggers,
    HostilityWeights,
    LifecycleConfig,
    PatternFamily,
    PatternId,
    PayoffConfig,
    SameDirectionConfig,
    StructuralConfig,
)

from .errors import (
    BlockProcessingError,
    ConfigurationError,
    GhostEvaluatorError,
    InvalidBlockError,
    InvariantViolation,
    OutOfOrderInputError,
    SessionHaltedError,
)

from .blocks import Block, BlockStream, Direction
from .runs import Broken, Continuing, RunTracker, calculate_run_profit
from .patterns import PatternEvaluationResult, PatternEvaluator
from .lifecycle import LifecycleStatus, PatternLifecycle, PauseReason, TransitionReason
from .same_direction import SameDirectionManager
from .structural import StructuralPatternLifecycle
from .hostility import HostilityDetector, HostilityLevel, IndicatorType
from .session import BlockOutcome, TradingSession
from .recorder import SessionRecorder, load_blocks, load_snapshot, replay_snapshot

__all__ = [
    "EngineConfig",
    "HostilityConfig",
    "HostilityTriggers",
    "HostilityWeights",
    "LifecycleConfig",
    "PatternFamily",
    "PatternId",
    "PayoffConfig",
    "SameDirectionConfig",
    "StructuralConfig",
    "BlockProcessingError",
    "ConfigurationError",
    "GhostEvaluatorError",
    "InvalidBlockError",
    "InvariantViolation",
    "OutOfOrderInputError",
    "SessionHaltedError",
    "Block",
    "BlockStream",
    "Direction",
    "Broken",
    "Continuing",
    "RunTracker",
    "calculate_run_profit",
    "PatternEvaluationResult",
    "PatternEvaluator",
    "LifecycleStatus",
    "PatternLifecycle",
    "PauseReason",
    "TransitionReason",
    "SameDirectionManager",
    "StructuralPatternLifecycle",
    "HostilityDetector",
    "HostilityLevel",
    "IndicatorType",
    "BlockOutcome",
    "TradingSession",
    "SessionRecorder",
    "load_blocks",
    "load_snapshot",
    "replay_snapshot",
]
