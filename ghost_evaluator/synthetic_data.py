"""
Synthetic Block Generator for Testing and Development
Generates block feeds with trending, alternating and hostile regimes
"""
import numpy as np
import pandas as pd
from typing import Dict, List, Optional

from .blocks import Block, Direction

# Probability that the next block continues the previous direction
REGIME_CONTINUATION = {
    'trending': 0.72,
    'alternating': 0.18,
    'random': 0.5,
    'hostile': 0.5,
}

# Magnitude distribution per regime: (mean, std) of a clipped normal
REGIME_MAGNITUDE = {
    'trending': (45.0, 18.0),
    'alternating': (40.0, 15.0),
    'random': (50.0, 22.0),
    'hostile': (72.0, 15.0),
}

REGIMES = list(REGIME_CONTINUATION.keys())


class SyntheticBlockGenerator:
    """
    Generates synthetic block feeds for exercising the engine

    Creates:
    - Trending stretches (long runs, good for SameDir)
    - Alternating stretches (single-block runs, ZZ setups)
    - Hostile stretches (coin flips at high magnitude)
    - Regime switching with a fixed per-block probability
    """

    def __init__(self, seed: Optional[int] = None, regime_switch_prob: float = 0.04):
        self.rng = np.random.RandomState(seed)
        self.regime_switch_prob = regime_switch_prob

    def generate(
        self,
        n_blocks: int,
        start_index: int = 0,
        initial_regime: str = 'random',
        regimes: Optional[List[str]] = None
    ) -> pd.DataFrame:
        """
        Generate a block feed

        Args:
            n_blocks: Number of blocks
            start_index: Index of the first block
            initial_regime: Regime of the first block
            regimes: Regimes to switch between (default: all)

        Returns:
            DataFrame with index, direction, magnitude, regime
        """
        regimes = regimes or REGIMES
        if initial_regime not in REGIME_CONTINUATION:
            raise ValueError(f"Unknown regime: {initial_regime}")

        regime = initial_regime
        direction = Direction.UP if self.rng.random_sample() < 0.5 else Direction.DOWN

        data = []
        for i in range(n_blocks):
            # Regime switching
            if i > 0 and self.rng.random_sample() < self.regime_switch_prob:
                regime = regimes[self.rng.randint(len(regimes))]

            if i > 0 and self.rng.random_sample() >= REGIME_CONTINUATION[regime]:
                direction = direction.opposite

            mean, std = REGIME_MAGNITUDE[regime]
            magnitude = float(np.clip(self.rng.normal(mean, std), 1.0, 99.0))

            data.append({
                'index': start_index + i,
                'direction': direction.value,
                'magnitude': round(magnitude, 1),
                'regime': regime,
            })

        return pd.DataFrame(data, columns=['index', 'direction', 'magnitude', 'regime'])

    def generate_blocks(self, n_blocks: int, start_index: int = 0, **kwargs) -> List[Block]:
        return frame_to_blocks(self.generate(n_blocks, start_index, **kwargs))

    def generate_regime_sequence(self, segments: List[Dict], start_index: int = 0) -> pd.DataFrame:
        """
        Generate consecutive fixed-regime segments

        Args:
            segments: [{'regime': 'trending', 'blocks': 30}, ...]
            start_index: Index of the first block

        Returns:
            Concatenated DataFrame
        """
        frames = []
        index = start_index
        for segment in segments:
            generator = SyntheticBlockGenerator(
                seed=self.rng.randint(2 ** 31 - 1), regime_switch_prob=0.0
            )
            frame = generator.generate(segment['blocks'], index, initial_regime=segment['regime'])
            frames.append(frame)
            index += segment['blocks']

        if not frames:
            return pd.DataFrame(columns=['index', 'direction', 'magnitude', 'regime'])
        return pd.concat(frames, ignore_index=True)


def frame_to_blocks(df: pd.DataFrame) -> List[Block]:
    """Convert a DataFrame with index/direction/magnitude columns to Blocks"""
    return [
        Block(int(row['index']), Direction.parse(row['direction']), float(row['magnitude']))
        for _, row in df.iterrows()
    ]


def blocks_to_frame(blocks: List[Block]) -> pd.DataFrame:
    return pd.DataFrame([b.to_dict() for b in blocks], columns=['index', 'direction', 'magnitude'])
