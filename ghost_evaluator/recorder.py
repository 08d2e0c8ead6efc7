"""
Session Recorder
Collects per-block outcomes, exposes them as DataFrames and persists
JSON snapshots that can be replayed into an identical session
"""
import json
import logging
import os
from typing import Dict, List, Optional

import pandas as pd

from .blocks import Block
from .config import EngineConfig
from .errors import InvalidBlockError
from .session import BlockOutcome, TradingSession

log = logging.getLogger(__name__)

SNAPSHOT_VERSION = 1

RESULT_COLUMNS = [
    'pattern', 'family', 'signal_block_index', 'eval_block_index',
    'predicted_direction', 'actual_direction', 'is_win', 'magnitude_at_eval',
    'pnl', 'was_bet', 'run_length_at_signal',
]
TRANSITION_COLUMNS = ['pattern', 'from_status', 'to_status', 'block_index', 'reason']
HOSTILITY_COLUMNS = [
    'block_index', 'score', 'level', 'pause_blocks_remaining',
    'recovery_signal_seen', 'action', 'indicator_count',
]


class SessionRecorder:
    """Listener that keeps every BlockOutcome of a session"""

    def __init__(self):
        self.session: Optional[TradingSession] = None
        self.outcomes: List[BlockOutcome] = []

    def attach(self, session: TradingSession) -> "SessionRecorder":
        self.session = session
        session.add_listener(self.record)
        return self

    def detach(self) -> None:
        if self.session is not None:
            self.session.remove_listener(self.record)
            self.session = None

    def record(self, outcome: BlockOutcome) -> None:
        self.outcomes.append(outcome)

    def clear(self) -> None:
        self.outcomes = []

    # =========================================================================
    # FRAMES
    # =========================================================================

    def blocks_frame(self) -> pd.DataFrame:
        return pd.DataFrame(
            [o.block.to_dict() for o in self.outcomes],
            columns=['index', 'direction', 'magnitude'],
        )

    def results_frame(self) -> pd.DataFrame:
        rows = [r.to_dict() for o in self.outcomes for r in o.results]
        return pd.DataFrame(rows, columns=RESULT_COLUMNS)

    def transitions_frame(self) -> pd.DataFrame:
        rows = [t.to_dict() for o in self.outcomes for t in o.transitions]
        return pd.DataFrame(rows, columns=TRANSITION_COLUMNS)

    def hostility_frame(self) -> pd.DataFrame:
        rows = []
        for outcome in self.outcomes:
            state = outcome.hostility
            if state is None:
                continue
            rows.append({
                'block_index': outcome.block.index,
                'score': state.score,
                'level': state.level.value,
                'pause_blocks_remaining': state.pause_blocks_remaining,
                'recovery_signal_seen': state.recovery_signal_seen,
                'action': outcome.hostility_action.value if outcome.hostility_action else None,
                'indicator_count': len(state.indicators),
            })
        return pd.DataFrame(rows, columns=HOSTILITY_COLUMNS)

    # =========================================================================
    # SNAPSHOTS
    # =========================================================================

    def to_snapshot(self, session: Optional[TradingSession] = None) -> Dict:
        """
        Everything needed to rebuild the session

        Args:
            session: Session to snapshot (default: the attached one)

        Returns:
            JSON-safe dict
        """
        session = session or self.session
        if session is None:
            raise ValueError("No session attached to the recorder")

        return {
            'version': SNAPSHOT_VERSION,
            'config': session.config.to_dict(),
            'blocks': session.stream.to_list(),
            'results': [r.to_dict() for o in self.outcomes for r in o.results],
            'transitions': [t.to_dict() for o in self.outcomes for t in o.transitions],
            'state': session.export_state(),
        }

    def save_snapshot(self, path: str, session: Optional[TradingSession] = None) -> str:
        snapshot = self.to_snapshot(session)
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(path, 'w') as f:
            json.dump(snapshot, f, indent=2)
        log.info("Snapshot saved to %s (%d blocks)", path, len(snapshot['blocks']))
        return path


def load_snapshot(path: str) -> Dict:
    with open(path) as f:
        snapshot = json.load(f)
    version = snapshot.get('version')
    if version != SNAPSHOT_VERSION:
        raise ValueError(f"Unsupported snapshot version {version} in {path}")
    return snapshot


def replay_snapshot(snapshot: Dict, recorder: Optional[SessionRecorder] = None) -> TradingSession:
    """
    Rebuild a session by re-feeding the recorded blocks

    The engine is deterministic, so the replayed session ends in the
    same state as the one that was snapshotted.
    """
    config = EngineConfig.from_dict(snapshot['config'])
    session = TradingSession(config)
    if recorder is not None:
        recorder.attach(session)

    blocks = [Block.from_dict(b) for b in snapshot['blocks']]
    session.run(blocks)
    log.info("Replayed %d blocks", len(blocks))
    return session


def snapshot_matches(snapshot: Dict, session: TradingSession) -> bool:
    """True when the session's exported state equals the snapshot's"""
    state = json.loads(json.dumps(session.export_state()))
    return state == snapshot['state']


def load_blocks(path: str) -> List[Block]:
    """
    Read a block feed from JSON or CSV

    JSON: a list of {index, direction, magnitude} records, or an object
    with a "blocks" list (a snapshot works). CSV: index,direction,magnitude
    columns; index is optional and defaults to 0..n-1.
    """
    ext = os.path.splitext(path)[1].lower()
    if ext == '.json':
        with open(path) as f:
            data = json.load(f)
        records = data.get('blocks') if isinstance(data, dict) else data
        if not isinstance(records, list):
            raise InvalidBlockError(f"{path} holds no list of block records")
        return [Block.from_dict(r) for r in records]

    if ext == '.csv':
        df = pd.read_csv(path)
        df.columns = [c.strip().lower() for c in df.columns]
        missing = {'direction', 'magnitude'} - set(df.columns)
        if missing:
            raise InvalidBlockError(f"{path} is missing columns: {sorted(missing)}")
        if 'index' not in df.columns:
            df['index'] = range(len(df))
        return [Block.from_dict(r) for r in df[['index', 'direction', 'magnitude']].to_dict('records')]

    raise ValueError(f"Unsupported block feed format: {path}")
