"""
Structural Pattern Lifecycle
Confirmation-activated lifecycles for AP5, OZ, PP and ST

These patterns never signal while OBSERVING. A run shape confirmed by a
strong block activates them, and once the rhythm they trade stops they
pause until the shape is confirmed again.

    Pattern  Confirmed when (after block N)          Confirmation block  Break (while ACTIVE)
    AP5      run of 3 after a 2+ run                 2nd of the run      flip after a run of <= 2
    OZ       run of 3 after a single                 1st of the run      flip back ended below 3
    PP       double after a single                   1st of the run      run of 3+, or two finished singles
    ST       double after a 2+ run                   2nd of the run      run of 3+

Losses still count toward the generic deactivation budget.
"""
import logging
from typing import Dict, List, Optional

from .blocks import BlockStream
from .config import LifecycleConfig, PatternId, StructuralConfig
from .lifecycle import (
    LifecycleStatus,
    LifecycleTransition,
    PatternLifecycle,
    PauseReason,
    TransitionReason,
)
from .patterns import PatternEvaluationResult
from .runs import RunHistory

log = logging.getLogger(__name__)


def _lengths(history: RunHistory):
    current = history.current_length
    previous = history.lengths[-2] if len(history.lengths) >= 2 else 0
    return current, previous


def confirmation_block(pattern: PatternId, history: RunHistory, block_index: int) -> Optional[int]:
    """
    Index of the block that confirms the pattern's shape, or None

    Args:
        pattern: One of the structural patterns
        history: Run history including block_index
        block_index: Index of the block just observed
    """
    current, previous = _lengths(history)
    if previous == 0:
        return None

    if pattern == PatternId.AP5 and current == 3 and previous >= 2:
        return block_index - 1
    if pattern == PatternId.OZ and current == 3 and previous == 1:
        return block_index - 2
    if pattern == PatternId.PP and current == 2 and previous == 1:
        return block_index - 1
    if pattern == PatternId.ST and current == 2 and previous >= 2:
        return block_index
    return None


class StructuralPatternLifecycle(PatternLifecycle):
    """
    Lifecycle for AP5, OZ, PP and ST

    OBSERVING -> ACTIVE on a confirmation, ACTIVE -> PAUSED on a structural
    break, PAUSED -> ACTIVE on the next confirmation. Hostility pauses are
    left to the HostilityDetector.
    """

    def __init__(
        self,
        pattern: PatternId,
        config: Optional[LifecycleConfig] = None,
        structural_config: Optional[StructuralConfig] = None,
        hostility_exempt: bool = False
    ):
        self.structural_config = structural_config or StructuralConfig()
        super().__init__(pattern, config, hostility_exempt)

    def reset(self):
        super().reset()
        self.confirmation_total = 0.0
        self.structural_breaks = 0
        # OZ: block where a winning bet started the flip back
        self._flip_back_start: Optional[int] = None

    def signals_enabled(self) -> bool:
        # OZ sits out while it watches its own flip back
        return self.state.status == LifecycleStatus.ACTIVE and self._flip_back_start is None

    def record(self, result: PatternEvaluationResult) -> List[LifecycleTransition]:
        transitions = super().record(result)
        if (self.pattern == PatternId.OZ and result.was_bet and result.is_win
                and self.state.status == LifecycleStatus.ACTIVE):
            self._flip_back_start = result.eval_block_index
        return transitions

    def _on_pause(self) -> None:
        self.confirmation_total = 0.0
        self._flip_back_start = None

    # =========================================================================
    # STRUCTURE
    # =========================================================================

    def observe_structure(
        self,
        history: RunHistory,
        stream: BlockStream,
        block_index: int
    ) -> List[LifecycleTransition]:
        """
        Apply the confirmation and break rules after a block

        Args:
            history: Run history including block_index
            stream: Block history, for the confirmation block's magnitude
            block_index: Index of the block just observed

        Returns:
            Transitions caused by this block (possibly empty)
        """
        self._pending = []
        if self.state.status == LifecycleStatus.ACTIVE:
            if self._is_broken(history, block_index):
                self.structural_breaks += 1
                self.pause(PauseReason.STRUCTURAL_BREAK, block_index)
        else:
            index = confirmation_block(self.pattern, history, block_index)
            if index is not None:
                block = stream.get(index)
                if block is not None:
                    self._confirm(block.magnitude, block_index)

        self.check_invariants(block_index)
        return self._drain()

    def _is_broken(self, history: RunHistory, block_index: int) -> bool:
        current, previous = _lengths(history)

        if self.pattern == PatternId.AP5:
            return current == 1 and 0 < previous <= 2
        if self.pattern == PatternId.PP:
            # Singles and doubles alternate, so two finished singles end it
            before = history.lengths[-3] if len(history.lengths) >= 3 else 0
            return current >= 3 or (current == 1 and previous == 1 and before == 1)
        if self.pattern == PatternId.ST:
            return current >= 3

        # OZ: judged once the flip back a winning bet started has ended
        if self._flip_back_start is None or current != 1 or block_index <= self._flip_back_start:
            return False
        self._flip_back_start = None
        if previous < 3:
            log.info("%s flip back ended at %d block(s)", self.name, previous)
            return True
        return False

    def _confirm(self, magnitude: float, block_index: int) -> None:
        state = self.state
        if state.status == LifecycleStatus.EXPIRED:
            return
        if state.status == LifecycleStatus.PAUSED and state.pause_reason != PauseReason.STRUCTURAL_BREAK:
            return

        cfg = self.structural_config
        self.confirmation_total += magnitude
        if (magnitude < cfg.confirmation_magnitude
                and self.confirmation_total < cfg.cumulative_confirmation_magnitude):
            log.debug(
                "%s confirmation %.0f%% (cumulative %.0f%%) at block %d, waiting",
                self.name, magnitude, self.confirmation_total, block_index,
            )
            return

        self.confirmation_total = 0.0
        if state.status == LifecycleStatus.OBSERVING:
            self.activate(block_index, TransitionReason.STRUCTURAL_CONFIRMATION)
        else:
            self.resume(block_index, TransitionReason.STRUCTURAL_CONFIRMATION)

    def export_state(self) -> Dict:
        data = super().export_state()
        data.update({
            'confirmation_total': self.confirmation_total,
            'structural_breaks': self.structural_breaks,
            'flip_back_start': self._flip_back_start,
        })
        return data
