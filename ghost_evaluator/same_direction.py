"""
Same Direction Manager
Continuation-family lifecycle with the cross-family channels

On top of the generic lifecycle:
- Activation only from a RunProfit >= activation threshold at a run break
- HIGH_PCT_REVERSAL pause before a large reversal loss is booked
- Rule 1: resume only on an ALTERNATION loss (never an Anti- loss)
- Rule 2: decay credit from alternation wins after the pause block
- Rule 3: formation-loss reversal on the block a ZZ setup forms while ACTIVE

Alternation results reach this class only through on_peer_result().
Formation is read from the run history, not from ZZ's results, so the
reversal lands before the next block's loss is booked.
"""
import logging
from collections import deque
from typing import Deque, Dict, List, Optional, Tuple

from .config import LifecycleConfig, PatternFamily, PatternId, SameDirectionConfig
from .lifecycle import (
    LifecycleStatus,
    LifecycleTransition,
    Outcome,
    PatternLifecycle,
    PauseReason,
    TransitionReason,
)
from .patterns import PatternEvaluationResult, setup_holds
from .runs import Broken, RunEvent, RunHistory

log = logging.getLogger(__name__)


class SameDirectionManager(PatternLifecycle):

    def __init__(
        self,
        config: Optional[LifecycleConfig] = None,
        same_direction_config: Optional[SameDirectionConfig] = None,
        hostility_exempt: bool = False
    ):
        self.sd_config = same_direction_config or SameDirectionConfig()
        super().__init__(PatternId.SAME_DIR, config, hostility_exempt)

    def reset(self):
        super().reset()
        self.last_alternation_family_result: Optional[PatternEvaluationResult] = None
        self.last_anti_alternation_family_result: Optional[PatternEvaluationResult] = None

        # Rule 2, zeroed at every new pause
        self.decay_credit_count = 0
        self.decay_credit_total = 0.0

        # Rule 3: (eval block index, loss amount) of single-block flip losses
        self._formation_losses: Deque[Tuple[int, float]] = deque(
            maxlen=self.sd_config.formation_window
        )
        self._last_formation_index: Optional[int] = None
        self.formation_reversal_count = 0
        self.formation_reversed_total = 0.0

    # =========================================================================
    # ACTIVATION
    # =========================================================================

    def _record_observing(self, result: PatternEvaluationResult) -> None:
        # Activation comes from run breaks, not from evaluation wins
        self.state.last_result = Outcome.WIN if result.is_win else Outcome.LOSS

    def observe_run_event(self, event: RunEvent, block_index: int) -> Optional[LifecycleTransition]:
        """Activate on a run break whose RunProfit meets the threshold"""
        if not isinstance(event, Broken):
            return None
        if self.state.status != LifecycleStatus.OBSERVING:
            return None

        run_profit = event.run_profit
        if run_profit is None or run_profit < self.config.activation_threshold:
            return None

        log.info(
            "%s RunProfit %.1f from %s x%d meets activation threshold %.1f",
            self.name, run_profit, event.finished_run.direction.value,
            event.finished_run.length, self.config.activation_threshold,
        )
        return self.activate(block_index, TransitionReason.RUN_PROFIT_ACTIVATION)

    # =========================================================================
    # PAUSE RULES
    # =========================================================================

    def _pause_before_loss(self, result: PatternEvaluationResult) -> Optional[PauseReason]:
        threshold = self.sd_config.high_pct_reversal_threshold
        if threshold is not None and result.magnitude_at_eval >= threshold:
            log.warning(
                "%s high-magnitude reversal %.0f%% at block %d, pausing before booking",
                self.name, result.magnitude_at_eval, result.eval_block_index,
            )
            return PauseReason.HIGH_PCT_REVERSAL
        return None

    def _pause_after_loss(self, result: PatternEvaluationResult) -> Optional[PauseReason]:
        limit = self.sd_config.pause_after_consecutive_losses
        if limit is not None and self.state.consecutive_losses >= limit:
            return PauseReason.CONSECUTIVE_LOSSES
        return None

    def _resume_condition(self, result: PatternEvaluationResult) -> Optional[TransitionReason]:
        # Own imaginary results never resume SameDir (rule 1)
        return None

    def _on_pause(self) -> None:
        self.decay_credit_count = 0
        self.decay_credit_total = 0.0
        self._formation_losses.clear()

    def _on_loss_booked(self, result: PatternEvaluationResult) -> None:
        if result.run_length_at_signal == 1:
            self._formation_losses.append((result.eval_block_index, result.loss_amount))

    # =========================================================================
    # CROSS-FAMILY CHANNELS
    # =========================================================================

    def on_peer_result(self, result: PatternEvaluationResult) -> List[LifecycleTransition]:
        """
        Consume another pattern's evaluation result

        The only ways an alternation result may touch this pattern's
        accumulated_loss: decay credit and resume trigger, both while
        paused. Anti-alternation results are recorded and otherwise ignored.
        """
        if result.pattern == self.pattern or result.family == PatternFamily.CONTINUATION:
            return []

        self._pending = []
        if result.family == PatternFamily.ANTI_ALTERNATION:
            if self._accepts(result):
                self.last_anti_alternation_family_result = result
            return []

        if self.state.status == LifecycleStatus.PAUSED and self._accepts(result):
            if result.is_win:
                if (result.pattern in self.sd_config.decay_credit_patterns
                        and result.eval_block_index > self.state.pause_start_index):
                    self._apply_decay_credit(result)
            elif result.pattern in self.sd_config.resume_trigger_patterns:
                self._resume_on_alternation_loss(result)

        if self._accepts(result):
            self.last_alternation_family_result = result

        self.check_invariants(result.eval_block_index)
        return self._drain()

    def _accepts(self, result: PatternEvaluationResult) -> bool:
        return result.was_bet or not self.sd_config.cross_family_requires_bet

    def _resume_on_alternation_loss(self, result: PatternEvaluationResult) -> None:
        """Rule 1: an alternation loss means the trend held"""
        if self.state.pause_reason == PauseReason.HOSTILITY:
            return
        log.info(
            "%s resume trigger: %s lost at block %d",
            self.name, result.pattern.value, result.eval_block_index,
        )
        self.resume(result.eval_block_index, TransitionReason.ALTERNATION_LOSS_RESUME)

    def _apply_decay_credit(self, result: PatternEvaluationResult) -> None:
        """Rule 2: a paused debt decays by a fraction of a cousin's win"""
        state = self.state
        before = state.accumulated_loss
        credit = self.sd_config.decay_credit_fraction * result.pnl
        state.accumulated_loss = max(0.0, before - credit)

        applied = before - state.accumulated_loss
        self.decay_credit_count += 1
        self.decay_credit_total += applied
        if applied > 0:
            log.info(
                "%s decay credit from %s win at block %d: %.1f -> %.1f",
                self.name, result.pattern.value, result.eval_block_index,
                before, state.accumulated_loss,
            )

    def observe_formation(self, history: RunHistory, block_index: int) -> None:
        """
        Rule 3: reverse the single-block flip losses that formed ZZ

        Called once per block with the run history including block_index.
        Only the block where a formation setup first holds counts; a setup
        that also held on the previous block is a running alternation.
        """
        formed = [p for p in self.sd_config.formation_patterns if setup_holds(p, history)]
        if not formed:
            return

        previous, self._last_formation_index = self._last_formation_index, block_index
        if previous == block_index - 1:
            return  # alternation already running
        if self.state.status != LifecycleStatus.ACTIVE:
            return

        window_start = block_index - self.sd_config.formation_window + 1
        eligible = [
            amount for index, amount in self._formation_losses
            if window_start <= index <= block_index
        ][:self.sd_config.formation_max_losses]

        if eligible:
            state = self.state
            amount = min(sum(eligible), state.accumulated_loss)
            state.accumulated_loss -= amount
            self.formation_reversal_count += 1
            self.formation_reversed_total += amount
            log.info(
                "%s formation reversal: %s formed at block %d, reversed %.1f over %d loss(es)",
                self.name, formed[0].value, block_index, amount, len(eligible),
            )
        self._formation_losses.clear()
        self.check_invariants(block_index)

    def export_state(self) -> Dict:
        data = super().export_state()
        data.update({
            'last_alternation_family_result': (
                self.last_alternation_family_result.to_dict()
                if self.last_alternation_family_result else None
            ),
            'last_anti_alternation_family_result': (
                self.last_anti_alternation_family_result.to_dict()
                if self.last_anti_alternation_family_result else None
            ),
            'decay_credit_count': self.decay_credit_count,
            'decay_credit_total': self.decay_credit_total,
            'formation_losses': [list(item) for item in self._formation_losses],
            'formation_reversal_count': self.formation_reversal_count,
            'formation_reversed_total': self.formation_reversed_total,
        })
        return data
