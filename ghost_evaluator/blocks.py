"""
Block Feed
Direction, immutable Block records and the append-only BlockStream
"""
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterator, List, Optional

from .errors import InvalidBlockError, OutOfOrderInputError


class Direction(Enum):
    UP = "UP"
    DOWN = "DOWN"

    @property
    def opposite(self) -> "Direction":
        return Direction.DOWN if self is Direction.UP else Direction.UP

    @property
    def sign(self) -> int:
        return 1 if self is Direction.UP else -1

    @classmethod
    def parse(cls, value) -> "Direction":
        """Accept UP/DOWN, G/R, or +1/-1"""
        if isinstance(value, Direction):
            return value
        if isinstance(value, str):
            key = value.strip().upper()
            if key in ('UP', 'G', 'GREEN', '1', '+1'):
                return cls.UP
            if key in ('DOWN', 'R', 'RED', '-1'):
                return cls.DOWN
        elif isinstance(value, (int, float)) and value in (1, -1):
            return cls.UP if value > 0 else cls.DOWN
        raise InvalidBlockError(f"Unrecognised direction: {value!r}")


@dataclass(frozen=True)
class Block:
    """One observed outcome"""
    index: int
    direction: Direction
    magnitude: float  # percent, 0-100

    def __post_init__(self):
        if not isinstance(self.direction, Direction):
            object.__setattr__(self, 'direction', Direction.parse(self.direction))
        if self.index is None or int(self.index) != self.index or self.index < 0:
            raise InvalidBlockError(f"Block index must be a non-negative integer (got {self.index})")
        if self.magnitude is None or not 0 <= self.magnitude <= 100:
            raise InvalidBlockError(
                f"Block {self.index} magnitude must be within 0-100 (got {self.magnitude})"
            )

    def to_dict(self) -> Dict:
        return {
            'index': self.index,
            'direction': self.direction.value,
            'magnitude': self.magnitude,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "Block":
        try:
            return cls(
                index=int(data['index']),
                direction=Direction.parse(data['direction']),
                magnitude=float(data['magnitude']),
            )
        except KeyError as e:
            raise InvalidBlockError(f"Block record missing field {e}") from e


class BlockStream:
    """
    Ordered, append-only block history

    Rejects any block whose index is not lastIndex + 1 instead of
    reindexing it, since run derivation is order-sensitive.
    """

    def __init__(self, start_index: int = 0):
        self.start_index = start_index
        self._blocks: List[Block] = []

    @property
    def expected_index(self) -> int:
        if not self._blocks:
            return self.start_index
        return self._blocks[-1].index + 1

    def check_order(self, block: Block) -> None:
        if block.index != self.expected_index:
            raise OutOfOrderInputError(self.expected_index, block.index)

    def append(self, block: Block) -> None:
        self.check_order(block)
        self._blocks.append(block)

    @property
    def last(self) -> Optional[Block]:
        return self._blocks[-1] if self._blocks else None

    def get(self, index: int) -> Optional[Block]:
        """Block by its feed index (not list position)"""
        pos = index - self.start_index
        if 0 <= pos < len(self._blocks):
            return self._blocks[pos]
        return None

    def __len__(self) -> int:
        return len(self._blocks)

    def __iter__(self) -> Iterator[Block]:
        return iter(self._blocks)

    def __getitem__(self, pos):
        return self._blocks[pos]

    def to_list(self) -> List[Dict]:
        return [b.to_dict() for b in self._blocks]
