"""
Trading Session
Per-block pipeline tying the engine components together

For each block, in order:
1. Order check against the BlockStream
2. Predictions from the run history BEFORE the block, evaluation
3. RunTracker update
4. Own-pattern lifecycle updates
5. Cross-family messages, the run event and any new alternation setup
   to SameDirectionManager
6. Confirmation and break rules of the structural patterns
7. HostilityDetector, then pause/resume directives

Errors in 2-3 abort the block only (BlockProcessingError). An
InvariantViolation halts the session for good.
"""
import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional

from .blocks import Block, BlockStream
from .config import STRUCTURAL_PATTERNS, EngineConfig, PatternId, parse_pattern
from .errors import (
    BlockProcessingError,
    GhostEvaluatorError,
    InvariantViolation,
    SessionHaltedError,
)
from .hostility import HostilityAction, HostilityDetector, HostilityState
from .lifecycle import (
    LifecycleStatus,
    LifecycleTransition,
    PatternLifecycle,
    PauseReason,
    TransitionReason,
)
from .patterns import PatternEvaluationResult, PatternEvaluator
from .runs import RunEvent, RunHistory, RunTracker
from .same_direction import SameDirectionManager
from .structural import StructuralPatternLifecycle

log = logging.getLogger(__name__)


@dataclass
class BlockOutcome:
    """Everything the engine produced for one block"""
    block: Block
    run_event: RunEvent
    results: List[PatternEvaluationResult] = field(default_factory=list)
    transitions: List[LifecycleTransition] = field(default_factory=list)
    hostility: Optional[HostilityState] = None
    hostility_action: Optional[HostilityAction] = None

    @property
    def bets(self) -> List[PatternEvaluationResult]:
        return [r for r in self.results if r.was_bet]

    def to_dict(self) -> Dict:
        return {
            'block': self.block.to_dict(),
            'results': [r.to_dict() for r in self.results],
            'transitions': [t.to_dict() for t in self.transitions],
            'hostility': self.hostility.to_dict() if self.hostility else None,
            'hostility_action': self.hostility_action.value if self.hostility_action else None,
        }


Listener = Callable[[BlockOutcome], None]


class TradingSession:
    """
    One isolated evaluation session

    Owns its own HostilityDetector (no module-level state), so several
    sessions can run side by side.
    """

    def __init__(self, config: Optional[EngineConfig] = None):
        self.config = (config or EngineConfig()).validate()
        self._listeners: List[Listener] = []
        self.reset()

    def reset(self):
        """Tear down all state and start a fresh session"""
        cfg = self.config
        self.stream = BlockStream(cfg.start_index)
        self.tracker = RunTracker(cfg.run_history_size)
        self.evaluator = PatternEvaluator(cfg.payoff, cfg.enabled_patterns)
        self.hostility = HostilityDetector(cfg.hostility)

        self.lifecycles: Dict[PatternId, PatternLifecycle] = {}
        for pattern in cfg.enabled_patterns:
            exempt = self.hostility.is_exempt(pattern)
            if pattern == PatternId.SAME_DIR:
                self.lifecycles[pattern] = SameDirectionManager(
                    cfg.lifecycle, cfg.same_direction, hostility_exempt=exempt
                )
            elif pattern in STRUCTURAL_PATTERNS:
                self.lifecycles[pattern] = StructuralPatternLifecycle(
                    pattern, cfg.lifecycle, cfg.structural, hostility_exempt=exempt
                )
            else:
                self.lifecycles[pattern] = PatternLifecycle(
                    pattern, cfg.lifecycle, hostility_exempt=exempt
                )

        self.halted = False
        self.halt_reason: Optional[str] = None
        self.evaluation_count = 0
        log.info("Session started with %d patterns", len(self.lifecycles))

    # =========================================================================
    # ACCESSORS
    # =========================================================================

    @property
    def same_direction(self) -> Optional[SameDirectionManager]:
        return self.lifecycles.get(PatternId.SAME_DIR)

    def lifecycle(self, pattern) -> PatternLifecycle:
        """Lifecycle by PatternId or display name"""
        return self.lifecycles[parse_pattern(pattern)]

    @property
    def next_index(self) -> int:
        return self.stream.expected_index

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        self._listeners.remove(listener)

    # =========================================================================
    # PIPELINE
    # =========================================================================

    def observe(self, block: Block) -> BlockOutcome:
        """
        Process one block

        Raises:
            OutOfOrderInputError: block.index is not the expected index
            BlockProcessingError: evaluation or run tracking failed (block skipped)
            InvariantViolation: engine state is corrupt, session halted
            SessionHaltedError: session was halted earlier
        """
        if self.halted:
            raise SessionHaltedError(f"Session halted: {self.halt_reason}")

        self.stream.check_order(block)
        try:
            outcome = self._process(block)
        except InvariantViolation as e:
            self.halted = True
            self.halt_reason = str(e)
            log.error("Session halted at block %d: %s", block.index, e)
            raise

        for listener in self._listeners:
            listener(outcome)
        return outcome

    def run(self, blocks: Iterable[Block]) -> List[BlockOutcome]:
        return [self.observe(block) for block in blocks]

    def _process(self, block: Block) -> BlockOutcome:
        history = self.tracker.history()

        try:
            results = self._evaluate(history, block)
        except GhostEvaluatorError:
            raise
        except Exception as e:
            raise BlockProcessingError(block.index, "PatternEvaluator", str(e)) from e

        try:
            run_event = self.tracker.observe(block)
        except Exception as e:
            raise BlockProcessingError(block.index, "RunTracker", str(e)) from e
        self.stream.append(block)

        transitions: List[LifecycleTransition] = []
        for result in results:
            transitions.extend(self.lifecycles[result.pattern].record(result))

        settled = self.tracker.history()
        same_direction = self.same_direction
        if same_direction is not None:
            for result in results:
                if result.pattern != PatternId.SAME_DIR:
                    transitions.extend(same_direction.on_peer_result(result))
            same_direction.observe_formation(settled, block.index)
            activation = same_direction.observe_run_event(run_event, block.index)
            if activation is not None:
                transitions.append(activation)

        for lifecycle in self.lifecycles.values():
            if isinstance(lifecycle, StructuralPatternLifecycle):
                transitions.extend(lifecycle.observe_structure(settled, self.stream, block.index))

        action = self.hostility.process_block(block.index, results)
        transitions.extend(self._apply_hostility(action, block.index))

        self.evaluation_count += len(results)
        return BlockOutcome(
            block=block,
            run_event=run_event,
            results=results,
            transitions=transitions,
            hostility=self.hostility.snapshot(),
            hostility_action=action,
        )

    def _evaluate(self, history: RunHistory, block: Block) -> List[PatternEvaluationResult]:
        results = []
        for pattern in self.evaluator.patterns:
            lifecycle = self.lifecycles[pattern]
            if not lifecycle.signals_enabled():
                continue
            predicted = self.evaluator.predict(pattern, history)
            if predicted is None:
                continue
            was_bet = (
                lifecycle.can_bet()
                and self.hostility.can_pattern_trade(pattern, lifecycle.confidence())
            )
            results.append(self.evaluator.evaluate(
                pattern, history, block, was_bet=was_bet, predicted_direction=predicted
            ))
        return results

    def _apply_hostility(
        self,
        action: Optional[HostilityAction],
        block_index: int
    ) -> List[LifecycleTransition]:
        transitions = []
        if action == HostilityAction.PAUSE:
            for lifecycle in self.lifecycles.values():
                if lifecycle.status == LifecycleStatus.ACTIVE and not lifecycle.hostility_exempt:
                    transitions.append(lifecycle.pause(PauseReason.HOSTILITY, block_index))
        elif action == HostilityAction.RESUME:
            for lifecycle in self.lifecycles.values():
                if (lifecycle.status == LifecycleStatus.PAUSED
                        and lifecycle.state.pause_reason == PauseReason.HOSTILITY):
                    transitions.append(lifecycle.resume(block_index, TransitionReason.HOSTILITY_RESUME))
        return transitions

    # =========================================================================
    # EXPORT
    # =========================================================================

    def export_state(self) -> Dict:
        return {
            'config': self.config.to_dict(),
            'next_index': self.next_index,
            'blocks_processed': len(self.stream),
            'evaluation_count': self.evaluation_count,
            'halted': self.halted,
            'halt_reason': self.halt_reason,
            'runs': self.tracker.export_state(),
            'lifecycles': {p.value: lc.export_state() for p, lc in self.lifecycles.items()},
            'hostility': self.hostility.export_state(),
        }
