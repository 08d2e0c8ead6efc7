"""
Configuration for the Ghost Evaluator Pattern Engine
Pattern vocabulary, thresholds, hostility weights and payoff parameters
"""
from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Dict, List, Optional

from .errors import ConfigurationError


# =============================================================================
# PATTERN VOCABULARY
# =============================================================================

class PatternFamily(Enum):
    CONTINUATION = "CONTINUATION"
    ALTERNATION = "ALTERNATION"
    ANTI_ALTERNATION = "ANTI_ALTERNATION"


class PatternId(Enum):
    SAME_DIR = "SameDir"
    ZZ = "ZZ"
    ANTI_ZZ = "AntiZZ"
    XAX_2 = "2A2"
    ANTI_XAX_2 = "Anti2A2"
    XAX_3 = "3A3"
    ANTI_XAX_3 = "Anti3A3"
    XAX_4 = "4A4"
    ANTI_XAX_4 = "Anti4A4"
    XAX_5 = "5A5"
    ANTI_XAX_5 = "Anti5A5"
    XAX_6 = "6A6"
    ANTI_XAX_6 = "Anti6A6"
    AP5 = "AP5"
    OZ = "OZ"
    PP = "PP"
    ST = "ST"


# Run length each XAX member keys on
XAX_RUN_LENGTHS: Dict[PatternId, int] = {
    PatternId.XAX_2: 2,
    PatternId.XAX_3: 3,
    PatternId.XAX_4: 4,
    PatternId.XAX_5: 5,
    PatternId.XAX_6: 6,
}

OPPOSITE_PATTERNS: Dict[PatternId, PatternId] = {
    PatternId.ZZ: PatternId.ANTI_ZZ,
    PatternId.XAX_2: PatternId.ANTI_XAX_2,
    PatternId.XAX_3: PatternId.ANTI_XAX_3,
    PatternId.XAX_4: PatternId.ANTI_XAX_4,
    PatternId.XAX_5: PatternId.ANTI_XAX_5,
    PatternId.XAX_6: PatternId.ANTI_XAX_6,
    PatternId.AP5: PatternId.OZ,
    PatternId.PP: PatternId.ST,
}
OPPOSITE_PATTERNS.update({anti: base for base, anti in list(OPPOSITE_PATTERNS.items())})

XAX_PATTERNS = list(XAX_RUN_LENGTHS.keys())
ANTI_XAX_PATTERNS = [OPPOSITE_PATTERNS[p] for p in XAX_PATTERNS]

# Signal only while ACTIVE, activated by a confirmed run shape
STRUCTURAL_PATTERNS = [PatternId.AP5, PatternId.OZ, PatternId.PP, PatternId.ST]

PATTERN_FAMILIES: Dict[PatternId, PatternFamily] = {
    PatternId.SAME_DIR: PatternFamily.CONTINUATION,
    PatternId.ZZ: PatternFamily.ALTERNATION,
    PatternId.ANTI_ZZ: PatternFamily.ANTI_ALTERNATION,
    PatternId.AP5: PatternFamily.CONTINUATION,
    PatternId.ST: PatternFamily.CONTINUATION,
    PatternId.OZ: PatternFamily.ALTERNATION,
    PatternId.PP: PatternFamily.ALTERNATION,
}
PATTERN_FAMILIES.update({p: PatternFamily.ALTERNATION for p in XAX_PATTERNS})
PATTERN_FAMILIES.update({p: PatternFamily.ANTI_ALTERNATION for p in ANTI_XAX_PATTERNS})

ALL_PATTERNS = list(PatternId)

# Alternation base members (the only patterns allowed to skip hostility pauses)
ALTERNATION_BASE_PATTERNS = [PatternId.ZZ, PatternId.ANTI_ZZ]


def family_of(pattern: PatternId) -> PatternFamily:
    return PATTERN_FAMILIES[pattern]


def opposite_of(pattern: PatternId) -> Optional[PatternId]:
    return OPPOSITE_PATTERNS.get(pattern)


def parse_pattern(name) -> PatternId:
    """Resolve a display name ("2A2", "SameDir") or enum member name"""
    if isinstance(name, PatternId):
        return name
    try:
        return PatternId(name)
    except ValueError:
        pass
    try:
        return PatternId[name]
    except KeyError:
        raise ConfigurationError(f"Unknown pattern: {name!r}")


# =============================================================================
# CONFIG DATACLASSES
# =============================================================================

@dataclass
class PayoffConfig:
    """pnl = +/- stake * magnitude ** exponent"""
    stake: float = 2.0
    exponent: float = 1.0


@dataclass
class LifecycleConfig:
    """Per-pattern activation / deactivation budget"""
    activation_threshold: float = 140.0
    deactivation_threshold: float = 140.0

    # Generic resume rule for pattern-specific pauses
    resume_consecutive_wins: int = 3
    resume_imaginary_profit: float = 100.0

    # Prediction confidence (consumed by hostility CAUTION gating)
    base_confidence: float = 55.0
    last_win_confidence_bonus: float = 10.0
    profit_confidence_bonus: float = 20.0
    profit_confidence_level: float = 150.0
    max_confidence: float = 95.0


@dataclass
class SameDirectionConfig:
    """Extra rules for the continuation (SameDir) lifecycle"""
    # Pattern-specific pause rules
    high_pct_reversal_threshold: Optional[float] = 70.0
    pause_after_consecutive_losses: Optional[int] = None

    # Decay credit while paused
    decay_credit_fraction: float = 0.5
    decay_credit_patterns: List[PatternId] = None

    # Resume trigger (alternation losses only)
    resume_trigger_patterns: List[PatternId] = None

    # Formation-loss reversal
    formation_patterns: List[PatternId] = None
    formation_window: int = 3
    formation_max_losses: int = 2

    # Only real bets feed the decay credit and resume trigger channels
    cross_family_requires_bet: bool = False

    def __post_init__(self):
        if self.decay_credit_patterns is None:
            self.decay_credit_patterns = list(XAX_PATTERNS)
        if self.resume_trigger_patterns is None:
            self.resume_trigger_patterns = [PatternId.ZZ] + list(XAX_PATTERNS)
        if self.formation_patterns is None:
            self.formation_patterns = [PatternId.ZZ]
        self.decay_credit_patterns = [parse_pattern(p) for p in self.decay_credit_patterns]
        self.resume_trigger_patterns = [parse_pattern(p) for p in self.resume_trigger_patterns]
        self.formation_patterns = [parse_pattern(p) for p in self.formation_patterns]


@dataclass
class StructuralConfig:
    """Confirmation rule for AP5, OZ, PP and ST"""
    # A single confirmation block at or above this magnitude activates
    confirmation_magnitude: float = 70.0
    # Or the confirmation magnitudes seen since the last activation add up to this
    cumulative_confirmation_magnitude: float = 100.0


@dataclass
class HostilityWeights:
    """Score delta per indicator"""
    cascade: float = 3.0
    cross_pattern: float = 2.0
    opposite_sync: float = 4.0
    high_pct: float = 1.0
    high_pct_cluster: float = 3.0
    wr_collapse: float = 2.0


@dataclass
class HostilityTriggers:
    """Indicator trigger conditions"""
    cascade_losses: int = 3
    cross_pattern_window: int = 3
    cross_pattern_min_patterns: int = 2
    opposite_sync_window: int = 5
    high_pct_threshold: float = 80.0
    high_pct_cluster_threshold: float = 70.0
    high_pct_cluster_window: int = 5
    high_pct_cluster_count: int = 3
    wr_collapse_window: int = 10
    wr_collapse_threshold: float = 30.0
    wr_collapse_cooldown: int = 5

    # Recovery signals
    recovery_window: int = 5
    recovery_win_rate: float = 50.0
    continuation_recovery_wins: int = 2


@dataclass
class HostilityConfig:
    """Global hostility scoring layer"""
    weights: HostilityWeights = field(default_factory=HostilityWeights)
    triggers: HostilityTriggers = field(default_factory=HostilityTriggers)

    decay_per_win: float = 2.0
    decay_per_idle_block: float = 0.5

    # Level thresholds (score >= level)
    caution_level: float = 5.0
    pause_level: float = 8.0
    extended_pause_level: float = 11.0

    pause_blocks: int = 5
    extended_pause_blocks: int = 10

    resume_score_threshold: float = 4.0
    caution_min_confidence: float = 60.0

    exempt_patterns: List[PatternId] = None

    # Score every evaluation instead of real bets only
    score_unbet_results: bool = False

    # Retention
    max_indicators: int = 50
    loss_block_retention: int = 10

    def __post_init__(self):
        if self.exempt_patterns is None:
            self.exempt_patterns = list(ALTERNATION_BASE_PATTERNS)
        self.exempt_patterns = [parse_pattern(p) for p in self.exempt_patterns]


@dataclass
class EngineConfig:
    """Top-level configuration consumed by TradingSession"""
    payoff: PayoffConfig = field(default_factory=PayoffConfig)
    lifecycle: LifecycleConfig = field(default_factory=LifecycleConfig)
    same_direction: SameDirectionConfig = field(default_factory=SameDirectionConfig)
    structural: StructuralConfig = field(default_factory=StructuralConfig)
    hostility: HostilityConfig = field(default_factory=HostilityConfig)

    # Trailing window of finished runs kept by RunTracker
    run_history_size: int = 20
    enabled_patterns: List[PatternId] = None

    # Expected index of the first block
    start_index: int = 0

    def __post_init__(self):
        if self.enabled_patterns is None:
            self.enabled_patterns = list(ALL_PATTERNS)
        self.enabled_patterns = [parse_pattern(p) for p in self.enabled_patterns]

    def validate(self) -> "EngineConfig":
        """Raise ConfigurationError on the first invalid value"""
        validate_config(self)
        return self

    def to_dict(self) -> Dict:
        return _encode(asdict(self))

    @classmethod
    def from_dict(cls, data: Dict) -> "EngineConfig":
        data = dict(data or {})
        unknown = set(data) - set(cls.__dataclass_fields__)
        if unknown:
            raise ConfigurationError(f"Unknown config keys: {sorted(unknown)}")

        hostility = dict(data.pop('hostility', {}) or {})
        try:
            weights = HostilityWeights(**hostility.pop('weights', {}))
            triggers = HostilityTriggers(**hostility.pop('triggers', {}))
            return cls(
                payoff=PayoffConfig(**data.pop('payoff', {})),
                lifecycle=LifecycleConfig(**data.pop('lifecycle', {})),
                same_direction=SameDirectionConfig(**data.pop('same_direction', {})),
                structural=StructuralConfig(**data.pop('structural', {})),
                hostility=HostilityConfig(weights=weights, triggers=triggers, **hostility),
                **data
            )
        except TypeError as e:
            raise ConfigurationError(str(e)) from e


def _encode(value):
    """Make asdict() output JSON-safe (enums -> display names)"""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {k: _encode(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_encode(v) for v in value]
    return value


# =============================================================================
# VALIDATION
# =============================================================================

def _positive(name: str, value) -> None:
    if value is None or value <= 0:
        raise ConfigurationError(f"{name} must be positive (got {value})")


def _non_negative(name: str, value) -> None:
    if value is None or value < 0:
        raise ConfigurationError(f"{name} must be non-negative (got {value})")


def validate_config(config: EngineConfig) -> None:
    # Payoff
    _positive('payoff.stake', config.payoff.stake)
    _positive('payoff.exponent', config.payoff.exponent)

    # Lifecycle
    lc = config.lifecycle
    _positive('lifecycle.activation_threshold', lc.activation_threshold)
    _positive('lifecycle.deactivation_threshold', lc.deactivation_threshold)
    _positive('lifecycle.resume_consecutive_wins', lc.resume_consecutive_wins)
    _positive('lifecycle.resume_imaginary_profit', lc.resume_imaginary_profit)
    _non_negative('lifecycle.base_confidence', lc.base_confidence)
    if lc.max_confidence < lc.base_confidence:
        raise ConfigurationError("lifecycle.max_confidence must be >= base_confidence")

    # Same direction
    sd = config.same_direction
    if not 0 < sd.decay_credit_fraction <= 1:
        raise ConfigurationError(
            f"same_direction.decay_credit_fraction must be in (0, 1] (got {sd.decay_credit_fraction})"
        )
    if sd.high_pct_reversal_threshold is not None:
        _positive('same_direction.high_pct_reversal_threshold', sd.high_pct_reversal_threshold)
    if sd.pause_after_consecutive_losses is not None:
        _positive('same_direction.pause_after_consecutive_losses', sd.pause_after_consecutive_losses)
    _positive('same_direction.formation_window', sd.formation_window)
    _positive('same_direction.formation_max_losses', sd.formation_max_losses)

    if not sd.resume_trigger_patterns:
        raise ConfigurationError("same_direction.resume_trigger_patterns must not be empty")
    for pattern in sd.resume_trigger_patterns:
        if family_of(pattern) != PatternFamily.ALTERNATION:
            raise ConfigurationError(
                f"Resume trigger {pattern.value} is not an alternation-family pattern"
            )
    for pattern in sd.decay_credit_patterns:
        if family_of(pattern) != PatternFamily.ALTERNATION:
            raise ConfigurationError(
                f"Decay credit pattern {pattern.value} is not an alternation-family pattern"
            )
    for pattern in sd.formation_patterns:
        if family_of(pattern) != PatternFamily.ALTERNATION:
            raise ConfigurationError(
                f"Formation pattern {pattern.value} is not an alternation-family pattern"
            )

    # Structural patterns
    _positive('structural.confirmation_magnitude', config.structural.confirmation_magnitude)
    _positive('structural.cumulative_confirmation_magnitude',
              config.structural.cumulative_confirmation_magnitude)

    # Hostility
    hc = config.hostility
    for name, weight in asdict(hc.weights).items():
        _non_negative(f'hostility.weights.{name}', weight)
    _non_negative('hostility.decay_per_win', hc.decay_per_win)
    _non_negative('hostility.decay_per_idle_block', hc.decay_per_idle_block)

    _positive('hostility.caution_level', hc.caution_level)
    if not hc.caution_level < hc.pause_level < hc.extended_pause_level:
        raise ConfigurationError(
            "hostility levels must be ordered caution < pause < extended_pause"
        )
    _positive('hostility.resume_score_threshold', hc.resume_score_threshold)
    if hc.resume_score_threshold > hc.pause_level:
        raise ConfigurationError("hostility.resume_score_threshold must not exceed pause_level")
    _positive('hostility.pause_blocks', hc.pause_blocks)
    _positive('hostility.extended_pause_blocks', hc.extended_pause_blocks)
    if hc.extended_pause_blocks < hc.pause_blocks:
        raise ConfigurationError("hostility.extended_pause_blocks must be >= pause_blocks")
    _non_negative('hostility.caution_min_confidence', hc.caution_min_confidence)
    _positive('hostility.max_indicators', hc.max_indicators)
    _positive('hostility.loss_block_retention', hc.loss_block_retention)

    tr = hc.triggers
    for name in ('cascade_losses', 'cross_pattern_window', 'cross_pattern_min_patterns',
                 'opposite_sync_window', 'high_pct_cluster_window', 'high_pct_cluster_count',
                 'wr_collapse_window', 'wr_collapse_cooldown', 'recovery_window',
                 'continuation_recovery_wins'):
        _positive(f'hostility.triggers.{name}', getattr(tr, name))
    for name in ('high_pct_threshold', 'high_pct_cluster_threshold',
                 'wr_collapse_threshold', 'recovery_win_rate'):
        value = getattr(tr, name)
        if not 0 <= value <= 100:
            raise ConfigurationError(f"hostility.triggers.{name} must be within 0-100 (got {value})")

    for pattern in hc.exempt_patterns:
        if pattern not in ALTERNATION_BASE_PATTERNS:
            raise ConfigurationError(
                f"Only ZZ/AntiZZ may be hostility-exempt (got {pattern.value})"
            )

    # Engine
    if not config.enabled_patterns:
        raise ConfigurationError("enabled_patterns must not be empty")
    if len(set(config.enabled_patterns)) != len(config.enabled_patterns):
        raise ConfigurationError("enabled_patterns contains duplicates")
    # ZZ needs indicator + 3 singles + the current run
    if config.run_history_size < 5:
        raise ConfigurationError(
            f"run_history_size must be >= 5 (got {config.run_history_size})"
        )
    _non_negative('start_index', config.start_index)
