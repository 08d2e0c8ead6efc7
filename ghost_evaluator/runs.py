"""
Run Tracking
Derives runs (maximal same-direction streaks) from the block feed

RunProfit for a run D1..Dk broken by block B:
    RunProfit = sum(D2..Dk) - B      (k >= 2, D1 is skipped)
"""
import logging
from collections import deque
from dataclasses import dataclass
from typing import Deque, Iterable, List, Optional, Tuple, Union

from .blocks import Block, Direction

log = logging.getLogger(__name__)

DEFAULT_HISTORY_SIZE = 20


def calculate_run_profit(magnitudes: Iterable[float], break_magnitude: float) -> Optional[float]:
    """
    RunProfit of a finished run

    Args:
        magnitudes: Magnitudes of the run blocks in order (D1..Dk)
        break_magnitude: Magnitude of the block that broke the run

    Returns:
        sum(D2..Dk) - break_magnitude, or None for single-block runs
    """
    magnitudes = list(magnitudes)
    if len(magnitudes) < 2:
        return None
    return sum(magnitudes[1:]) - break_magnitude


@dataclass(frozen=True)
class Run:
    """A maximal same-direction streak"""
    direction: Direction
    length: int
    start_index: int
    end_index: int
    total_magnitude: float  # sum of magnitudes after the first block

    def run_profit(self, break_magnitude: float) -> Optional[float]:
        if self.length < 2:
            return None
        return self.total_magnitude - break_magnitude


@dataclass(frozen=True)
class RunHistory:
    """
    Trailing window of run lengths/directions, current run last

    window_truncated is True once older runs have been dropped from the
    bounded window.
    """
    lengths: Tuple[int, ...]
    directions: Tuple[Direction, ...]
    window_truncated: bool = False

    @property
    def is_empty(self) -> bool:
        return not self.lengths

    @property
    def current_length(self) -> int:
        return self.lengths[-1] if self.lengths else 0

    @property
    def current_direction(self) -> Optional[Direction]:
        return self.directions[-1] if self.directions else None

    def trailing_singles(self) -> int:
        """Number of consecutive length-1 runs at the end (current included)"""
        count = 0
        for length in reversed(self.lengths):
            if length != 1:
                break
            count += 1
        return count


@dataclass(frozen=True)
class Continuing:
    """Block extended the current run (or started the very first run)"""
    current_run: Run


@dataclass(frozen=True)
class Broken:
    """Block flipped direction: finished_run is closed, block starts a new run"""
    finished_run: Run
    new_run_start_block: Block
    current_run: Run

    @property
    def run_profit(self) -> Optional[float]:
        return self.finished_run.run_profit(self.new_run_start_block.magnitude)


RunEvent = Union[Continuing, Broken]


class RunTracker:
    """
    Incremental run derivation

    Keeps only the current run plus a bounded window of finished runs,
    so memory is O(history_size) regardless of session length.
    """

    def __init__(self, history_size: int = DEFAULT_HISTORY_SIZE):
        self.history_size = history_size
        self.reset()

    def reset(self):
        self._direction: Optional[Direction] = None
        self._length = 0
        self._start_index = -1
        self._end_index = -1
        self._total_magnitude = 0.0
        self._finished: Deque[Run] = deque(maxlen=self.history_size)
        self._dropped_runs = 0
        self.blocks_observed = 0

    @property
    def current_run(self) -> Optional[Run]:
        if self._direction is None:
            return None
        return Run(
            direction=self._direction,
            length=self._length,
            start_index=self._start_index,
            end_index=self._end_index,
            total_magnitude=self._total_magnitude,
        )

    @property
    def finished_runs(self) -> List[Run]:
        return list(self._finished)

    def observe(self, block: Block) -> RunEvent:
        self.blocks_observed += 1

        # First block ever
        if self._direction is None:
            self._start_run(block)
            return Continuing(self.current_run)

        if block.direction == self._direction:
            self._length += 1
            self._end_index = block.index
            self._total_magnitude += block.magnitude
            return Continuing(self.current_run)

        finished = self.current_run
        if len(self._finished) == self._finished.maxlen:
            self._dropped_runs += 1
        self._finished.append(finished)
        self._start_run(block)

        event = Broken(finished, block, self.current_run)
        log.debug(
            "Run break at block %d: %s x%d, RunProfit=%s",
            block.index, finished.direction.value, finished.length, event.run_profit,
        )
        return event

    def _start_run(self, block: Block) -> None:
        self._direction = block.direction
        self._length = 1
        self._start_index = block.index
        self._end_index = block.index
        self._total_magnitude = 0.0  # D1 never counts toward RunProfit

    def history(self) -> RunHistory:
        runs = list(self._finished)
        current = self.current_run
        if current is not None:
            runs.append(current)
        return RunHistory(
            lengths=tuple(r.length for r in runs),
            directions=tuple(r.direction for r in runs),
            window_truncated=self._dropped_runs > 0,
        )

    def recent_lengths(self, n: Optional[int] = None) -> List[int]:
        lengths = list(self.history().lengths)
        return lengths if n is None else lengths[-n:]

    def export_state(self) -> dict:
        current = self.current_run
        return {
            'blocks_observed': self.blocks_observed,
            'current_run': None if current is None else {
                'direction': current.direction.value,
                'length': current.length,
                'start_index': current.start_index,
                'end_index': current.end_index,
                'total_magnitude': current.total_magnitude,
            },
            'recent_lengths': self.recent_lengths(),
        }
