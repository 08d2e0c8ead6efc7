"""
Error Taxonomy for the Pattern Engine

- ConfigurationError: rejected before any block is processed
- OutOfOrderInputError / InvalidBlockError: bad input, abort that block only
- BlockProcessingError: component failure on one block, carries context
- InvariantViolation: programming error, fatal to the session
"""
from typing import Optional


class GhostEvaluatorError(Exception):
    """Base class for all engine errors"""


class ConfigurationError(GhostEvaluatorError, ValueError):
    """Invalid threshold, weight or pattern set in the configuration"""


class InvalidBlockError(GhostEvaluatorError, ValueError):
    """Block record with an out-of-range field"""


class OutOfOrderInputError(GhostEvaluatorError):
    """Block index is not lastIndex + 1"""

    def __init__(self, expected: int, received: int):
        self.expected = expected
        self.received = received
        super().__init__(
            f"Block index {received} out of order (expected {expected})"
        )


class BlockProcessingError(GhostEvaluatorError):
    """A component failed while processing a single block"""

    def __init__(self, block_index: int, component: str, message: str):
        self.block_index = block_index
        self.component = component
        super().__init__(f"[{component}] block {block_index}: {message}")


class InvariantViolation(GhostEvaluatorError):
    """Lifecycle or hostility invariant broken - statistics can't be trusted"""

    def __init__(self, component: str, detail: str, block_index: Optional[int] = None):
        self.component = component
        self.detail = detail
        self.block_index = block_index
        where = f" at block {block_index}" if block_index is not None else ""
        super().__init__(f"[{component}] invariant violated{where}: {detail}")


class SessionHaltedError(GhostEvaluatorError):
    """Session was halted by an earlier invariant violation"""
