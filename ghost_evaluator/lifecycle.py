"""
Pattern Lifecycle
Per-pattern state machine with an accumulated-loss budget

    OBSERVING -> ACTIVE -> PAUSED <-> ACTIVE -> EXPIRED

- ACTIVE:  losses add to accumulated_loss, a win larger than the debt
           resets it to 0, debt strictly above the deactivation
           threshold expires the pattern
- PAUSED:  accumulated_loss is frozen, results are booked as imaginary
- EXPIRED: terminal, results are logged as "would-have" only
"""
import logging
from dataclasses import dataclass, asdict
from enum import Enum
from typing import Dict, List, Optional

from .config import LifecycleConfig, PatternFamily, PatternId, family_of
from .errors import InvariantViolation
from .patterns import PatternEvaluationResult

log = logging.getLogger(__name__)


class LifecycleStatus(Enum):
    OBSERVING = "OBSERVING"
    ACTIVE = "ACTIVE"
    PAUSED = "PAUSED"
    EXPIRED = "EXPIRED"


class PauseReason(Enum):
    HOSTILITY = "HOSTILITY"
    HIGH_PCT_REVERSAL = "HIGH_PCT_REVERSAL"
    CONSECUTIVE_LOSSES = "CONSECUTIVE_LOSSES"
    STRUCTURAL_BREAK = "STRUCTURAL_BREAK"


class TransitionReason(Enum):
    ACTIVATION_THRESHOLD = "ACTIVATION_THRESHOLD"
    RUN_PROFIT_ACTIVATION = "RUN_PROFIT_ACTIVATION"
    DEACTIVATION_THRESHOLD = "DEACTIVATION_THRESHOLD"
    HOSTILITY_PAUSE = "HOSTILITY_PAUSE"
    HIGH_PCT_REVERSAL = "HIGH_PCT_REVERSAL"
    CONSECUTIVE_LOSSES = "CONSECUTIVE_LOSSES"
    IMAGINARY_WIN_STREAK = "IMAGINARY_WIN_STREAK"
    IMAGINARY_PROFIT = "IMAGINARY_PROFIT"
    ALTERNATION_LOSS_RESUME = "ALTERNATION_LOSS_RESUME"
    HOSTILITY_RESUME = "HOSTILITY_RESUME"
    STRUCTURAL_CONFIRMATION = "STRUCTURAL_CONFIRMATION"
    STRUCTURAL_BREAK = "STRUCTURAL_BREAK"


class Outcome(Enum):
    WIN = "WIN"
    LOSS = "LOSS"


PAUSE_TRANSITION_REASONS = {
    PauseReason.HOSTILITY: TransitionReason.HOSTILITY_PAUSE,
    PauseReason.HIGH_PCT_REVERSAL: TransitionReason.HIGH_PCT_REVERSAL,
    PauseReason.CONSECUTIVE_LOSSES: TransitionReason.CONSECUTIVE_LOSSES,
    PauseReason.STRUCTURAL_BREAK: TransitionReason.STRUCTURAL_BREAK,
}

ALLOWED_TRANSITIONS = {
    LifecycleStatus.OBSERVING: {LifecycleStatus.ACTIVE},
    LifecycleStatus.ACTIVE: {LifecycleStatus.PAUSED, LifecycleStatus.EXPIRED},
    LifecycleStatus.PAUSED: {LifecycleStatus.ACTIVE},
    LifecycleStatus.EXPIRED: set(),
}


@dataclass(frozen=True)
class LifecycleTransition:
    pattern: PatternId
    from_status: LifecycleStatus
    to_status: LifecycleStatus
    block_index: int
    reason: TransitionReason

    def to_dict(self) -> Dict:
        return {
            'pattern': self.pattern.value,
            'from_status': self.from_status.value,
            'to_status': self.to_status.value,
            'block_index': self.block_index,
            'reason': self.reason.value,
        }


@dataclass
class PatternLifecycleState:
    """Mutable state of one pattern, owned by its lifecycle instance"""
    pattern: PatternId
    status: LifecycleStatus = LifecycleStatus.OBSERVING
    accumulated_loss: float = 0.0
    accumulated_profit: float = 0.0
    pause_reason: Optional[PauseReason] = None
    pause_start_index: Optional[int] = None
    consecutive_losses: int = 0
    last_result: Optional[Outcome] = None

    # OBSERVING
    observation_profit: float = 0.0
    activation_index: Optional[int] = None

    # Real accounting (ACTIVE, bet placed)
    real_wins: int = 0
    real_losses: int = 0
    real_pnl: float = 0.0

    # Imaginary accounting (PAUSED, or ACTIVE without a bet)
    imaginary_wins: int = 0
    imaginary_losses: int = 0
    imaginary_pnl: float = 0.0
    consecutive_imaginary_wins: int = 0
    pause_imaginary_pnl: float = 0.0

    # EXPIRED
    would_have_wins: int = 0
    would_have_losses: int = 0
    would_have_pnl: float = 0.0

    def to_dict(self) -> Dict:
        data = asdict(self)
        data['pattern'] = self.pattern.value
        data['status'] = self.status.value
        data['pause_reason'] = self.pause_reason.value if self.pause_reason else None
        data['last_result'] = self.last_result.value if self.last_result else None
        return data


class PatternLifecycle:
    """
    Lifecycle of a single pattern

    Mutated only through record() (own evaluation results) and the
    pause()/resume() directives. Subclasses hook the pattern-specific
    pause and resume rules.
    """

    def __init__(
        self,
        pattern: PatternId,
        config: Optional[LifecycleConfig] = None,
        hostility_exempt: bool = False
    ):
        self.pattern = pattern
        self.family: PatternFamily = family_of(pattern)
        self.config = config or LifecycleConfig()
        self.hostility_exempt = hostility_exempt
        self.reset()

    def reset(self):
        self.state = PatternLifecycleState(pattern=self.pattern)
        self.transitions: List[LifecycleTransition] = []
        self._pending: List[LifecycleTransition] = []

    @property
    def name(self) -> str:
        return self.pattern.value

    @property
    def status(self) -> LifecycleStatus:
        return self.state.status

    @property
    def component(self) -> str:
        return f"lifecycle:{self.name}"

    # =========================================================================
    # QUERIES
    # =========================================================================

    def can_bet(self) -> bool:
        return self.state.status == LifecycleStatus.ACTIVE

    def signals_enabled(self) -> bool:
        """Whether this pattern's setup is evaluated at all on the next block"""
        return True

    def confidence(self) -> float:
        """Prediction confidence used for hostility CAUTION gating"""
        cfg = self.config
        value = cfg.base_confidence
        if self.state.last_result == Outcome.WIN:
            value += cfg.last_win_confidence_bonus
        if self.state.accumulated_profit > cfg.profit_confidence_level:
            value += cfg.profit_confidence_bonus
        return min(value, cfg.max_confidence)

    # =========================================================================
    # RESULTS
    # =========================================================================

    def record(self, result: PatternEvaluationResult) -> List[LifecycleTransition]:
        """
        Apply one of this pattern's own evaluation results

        Returns:
            Transitions caused by this result (possibly empty)
        """
        if result.pattern != self.pattern:
            raise InvariantViolation(
                self.component,
                f"received a {result.pattern.value} result",
                result.eval_block_index,
            )

        self._pending = []
        status = self.state.status
        if status == LifecycleStatus.OBSERVING:
            self._record_observing(result)
        elif status == LifecycleStatus.ACTIVE:
            if result.was_bet:
                self._record_active(result)
            else:
                self._book_imaginary(result)
        elif status == LifecycleStatus.PAUSED:
            self._record_paused(result)
        else:
            self._record_expired(result)

        self.check_invariants(result.eval_block_index)
        return self._drain()

    def _record_observing(self, result: PatternEvaluationResult) -> None:
        state = self.state
        state.last_result = Outcome.WIN if result.is_win else Outcome.LOSS
        if result.is_win:
            state.observation_profit += result.pnl
        else:
            state.observation_profit = 0.0

        if state.observation_profit >= self.config.activation_threshold:
            self.activate(result.eval_block_index, TransitionReason.ACTIVATION_THRESHOLD)

    def _record_active(self, result: PatternEvaluationResult) -> None:
        state = self.state
        block_index = result.eval_block_index

        if result.is_win:
            state.real_wins += 1
            state.real_pnl += result.pnl
            state.accumulated_profit += result.pnl
            state.consecutive_losses = 0
            state.last_result = Outcome.WIN
            if result.pnl > state.accumulated_loss:
                if state.accumulated_loss > 0:
                    log.debug(
                        "%s big win %.1f clears debt %.1f at block %d",
                        self.name, result.pnl, state.accumulated_loss, block_index,
                    )
                state.accumulated_loss = 0.0
            return

        # Pattern-specific rules that pause before the loss is booked
        reason = self._pause_before_loss(result)
        if reason is not None:
            self.pause(reason, block_index)
            self._book_imaginary(result)
            return

        loss = result.loss_amount
        state.real_losses += 1
        state.real_pnl += result.pnl
        state.accumulated_profit += result.pnl
        state.accumulated_loss += loss
        state.consecutive_losses += 1
        state.last_result = Outcome.LOSS
        self._on_loss_booked(result)

        if state.accumulated_loss > self.config.deactivation_threshold:
            self._transition(LifecycleStatus.EXPIRED, block_index, TransitionReason.DEACTIVATION_THRESHOLD)
            return

        reason = self._pause_after_loss(result)
        if reason is not None:
            self.pause(reason, block_index)

    def _record_paused(self, result: PatternEvaluationResult) -> None:
        self._book_imaginary(result)
        if self.state.pause_reason == PauseReason.HOSTILITY:
            return
        reason = self._resume_condition(result)
        if reason is not None:
            self.resume(result.eval_block_index, reason)

    def _record_expired(self, result: PatternEvaluationResult) -> None:
        state = self.state
        if result.is_win:
            state.would_have_wins += 1
        else:
            state.would_have_losses += 1
        state.would_have_pnl += result.pnl
        log.debug(
            "%s expired, would-have %s %.1f at block %d",
            self.name, 'WIN' if result.is_win else 'LOSS', result.pnl, result.eval_block_index,
        )

    def _book_imaginary(self, result: PatternEvaluationResult) -> None:
        state = self.state
        state.last_result = Outcome.WIN if result.is_win else Outcome.LOSS
        state.imaginary_pnl += result.pnl
        if state.status == LifecycleStatus.PAUSED:
            state.pause_imaginary_pnl += result.pnl
        if result.is_win:
            state.imaginary_wins += 1
            state.consecutive_imaginary_wins += 1
        else:
            state.imaginary_losses += 1
            state.consecutive_imaginary_wins = 0

    # =========================================================================
    # PATTERN-SPECIFIC HOOKS
    # =========================================================================

    def _pause_before_loss(self, result: PatternEvaluationResult) -> Optional[PauseReason]:
        return None

    def _pause_after_loss(self, result: PatternEvaluationResult) -> Optional[PauseReason]:
        return None

    def _resume_condition(self, result: PatternEvaluationResult) -> Optional[TransitionReason]:
        """Generic resume: N consecutive imaginary wins or enough imaginary pnl"""
        state = self.state
        if state.consecutive_imaginary_wins >= self.config.resume_consecutive_wins:
            return TransitionReason.IMAGINARY_WIN_STREAK
        if state.pause_imaginary_pnl >= self.config.resume_imaginary_profit:
            return TransitionReason.IMAGINARY_PROFIT
        return None

    def _on_pause(self) -> None:
        pass

    def _on_loss_booked(self, result: PatternEvaluationResult) -> None:
        pass

    # =========================================================================
    # DIRECTIVES
    # =========================================================================

    def activate(self, block_index: int, reason: TransitionReason) -> LifecycleTransition:
        transition = self._transition(LifecycleStatus.ACTIVE, block_index, reason)
        state = self.state
        state.accumulated_loss = 0.0
        state.accumulated_profit = 0.0
        state.observation_profit = 0.0
        state.consecutive_losses = 0
        state.activation_index = block_index
        return transition

    def pause(self, reason: PauseReason, block_index: int) -> LifecycleTransition:
        if reason == PauseReason.HOSTILITY and self.hostility_exempt:
            raise InvariantViolation(
                self.component, "hostility pause directive sent to an exempt pattern", block_index
            )
        transition = self._transition(LifecycleStatus.PAUSED, block_index, PAUSE_TRANSITION_REASONS[reason])
        state = self.state
        state.pause_reason = reason
        state.pause_start_index = block_index
        state.consecutive_imaginary_wins = 0
        state.pause_imaginary_pnl = 0.0
        self._on_pause()
        return transition

    def resume(self, block_index: int, reason: TransitionReason) -> LifecycleTransition:
        transition = self._transition(LifecycleStatus.ACTIVE, block_index, reason)
        state = self.state
        state.pause_reason = None
        state.pause_start_index = None
        state.consecutive_imaginary_wins = 0
        state.pause_imaginary_pnl = 0.0
        state.consecutive_losses = 0
        return transition

    def _transition(
        self,
        to_status: LifecycleStatus,
        block_index: int,
        reason: TransitionReason
    ) -> LifecycleTransition:
        from_status = self.state.status
        if from_status == LifecycleStatus.EXPIRED:
            raise InvariantViolation(
                self.component, f"transition to {to_status.value} attempted from EXPIRED", block_index
            )
        if to_status not in ALLOWED_TRANSITIONS[from_status]:
            raise InvariantViolation(
                self.component,
                f"illegal transition {from_status.value} -> {to_status.value}",
                block_index,
            )

        self.state.status = to_status
        transition = LifecycleTransition(
            pattern=self.pattern,
            from_status=from_status,
            to_status=to_status,
            block_index=block_index,
            reason=reason,
        )
        self.transitions.append(transition)
        self._pending.append(transition)
        log.info(
            "%s %s -> %s at block %d (%s)",
            self.name, from_status.value, to_status.value, block_index, reason.value,
        )
        return transition

    def _drain(self) -> List[LifecycleTransition]:
        pending, self._pending = self._pending, []
        return pending

    def check_invariants(self, block_index: Optional[int] = None) -> None:
        if self.state.accumulated_loss < 0:
            raise InvariantViolation(
                self.component,
                f"accumulated_loss is negative ({self.state.accumulated_loss})",
                block_index,
            )

    def export_state(self) -> Dict:
        data = self.state.to_dict()
        data['family'] = self.family.value
        data['confidence'] = self.confidence()
        return data
