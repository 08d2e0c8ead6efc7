"""
Evaluation and Metrics for Ghost Evaluator Sessions
Per-pattern and per-session performance summaries over recorded results
"""
import numpy as np
import pandas as pd
from dataclasses import dataclass, asdict
from typing import Dict, Optional

from .recorder import RESULT_COLUMNS, SessionRecorder
from .session import TradingSession


@dataclass
class SessionMetrics:
    """Aggregate metrics for one session"""
    blocks: int
    evaluations: int
    bets: int
    bet_wins: int
    bet_win_rate: float
    bet_pnl: float
    max_drawdown: float
    unbet_pnl: float
    transitions: int
    hostility_pauses: int
    blocks_in_hostility_pause: int
    mean_hostility_score: float
    max_hostility_score: float

    def to_dict(self) -> Dict:
        return asdict(self)


def max_drawdown(pnl: np.ndarray) -> float:
    """Largest peak-to-trough drop of the cumulative pnl curve"""
    pnl = np.asarray(pnl, dtype=float)
    if len(pnl) == 0:
        return 0.0
    equity = np.concatenate([[0.0], np.cumsum(pnl)])
    peaks = np.maximum.accumulate(equity)
    return float(np.max(peaks - equity))


def pattern_summary(results: pd.DataFrame) -> pd.DataFrame:
    """
    Per-pattern performance table

    Args:
        results: Evaluation log (SessionRecorder.results_frame())

    Returns:
        DataFrame indexed by pattern
    """
    columns = ['family', 'evaluations', 'bets', 'bet_wins', 'bet_win_rate',
               'bet_pnl', 'max_drawdown', 'unbet_pnl', 'signal_win_rate']
    if results.empty:
        return pd.DataFrame(columns=columns)

    rows = {}
    for pattern, group in results.groupby('pattern', sort=False):
        bets = group[group['was_bet']]
        unbet = group[~group['was_bet']]
        rows[pattern] = {
            'family': group['family'].iloc[0],
            'evaluations': len(group),
            'bets': len(bets),
            'bet_wins': int(bets['is_win'].sum()),
            'bet_win_rate': float(bets['is_win'].mean()) if len(bets) else 0.0,
            'bet_pnl': float(bets['pnl'].sum()),
            'max_drawdown': max_drawdown(bets['pnl'].values),
            'unbet_pnl': float(unbet['pnl'].sum()),
            'signal_win_rate': float(group['is_win'].mean()),
        }

    summary = pd.DataFrame.from_dict(rows, orient='index', columns=columns)
    summary.index.name = 'pattern'
    return summary


def lifecycle_summary(session: TradingSession) -> pd.DataFrame:
    """Current lifecycle state of every pattern"""
    columns = ['family', 'status', 'accumulated_loss', 'accumulated_profit',
               'real_wins', 'real_losses', 'real_pnl',
               'imaginary_wins', 'imaginary_losses', 'imaginary_pnl', 'pause_reason']
    rows = {p.value: lc.export_state() for p, lc in session.lifecycles.items()}
    summary = pd.DataFrame.from_dict(rows, orient='index')
    if summary.empty:
        return pd.DataFrame(columns=columns)
    summary = summary[columns]
    summary.index.name = 'pattern'
    return summary


def session_metrics(recorder: SessionRecorder) -> SessionMetrics:
    results = recorder.results_frame()
    if results.empty:
        results = pd.DataFrame(columns=RESULT_COLUMNS)
    bets = results[results['was_bet'].astype(bool)]
    unbet = results[~results['was_bet'].astype(bool)]

    hostility = recorder.hostility_frame()
    paused = hostility['level'].isin(['PAUSE', 'EXTENDED_PAUSE']) if not hostility.empty else pd.Series(dtype=bool)

    return SessionMetrics(
        blocks=len(recorder.outcomes),
        evaluations=len(results),
        bets=len(bets),
        bet_wins=int(bets['is_win'].astype(bool).sum()),
        bet_win_rate=float(bets['is_win'].astype(bool).mean()) if len(bets) else 0.0,
        bet_pnl=float(bets['pnl'].astype(float).sum()),
        max_drawdown=max_drawdown(bets['pnl'].astype(float).values),
        unbet_pnl=float(unbet['pnl'].astype(float).sum()),
        transitions=sum(len(o.transitions) for o in recorder.outcomes),
        hostility_pauses=int((hostility['action'] == 'PAUSE').sum()) if not hostility.empty else 0,
        blocks_in_hostility_pause=int(paused.sum()),
        mean_hostility_score=float(hostility['score'].mean()) if not hostility.empty else 0.0,
        max_hostility_score=float(hostility['score'].max()) if not hostility.empty else 0.0,
    )


def generate_report(
    recorder: SessionRecorder,
    session: Optional[TradingSession] = None
) -> str:
    """Generate a plain-text session report"""
    session = session or recorder.session
    metrics = session_metrics(recorder)
    patterns = pattern_summary(recorder.results_frame())

    lines = [
        "=" * 70,
        "GHOST EVALUATOR - SESSION REPORT",
        "=" * 70,
        f"Blocks: {metrics.blocks}   Evaluations: {metrics.evaluations}   Bets: {metrics.bets}",
        f"Bet win rate: {metrics.bet_win_rate:.1%}   Bet PnL: {metrics.bet_pnl:.1f}   "
        f"Max drawdown: {metrics.max_drawdown:.1f}",
        f"Hostility pauses: {metrics.hostility_pauses}   "
        f"Blocks paused: {metrics.blocks_in_hostility_pause}   "
        f"Max score: {metrics.max_hostility_score:.1f}",
        "",
        "PATTERNS",
        "-" * 70,
        f"{'Pattern':<10} {'Status':<10} {'Evals':<7} {'Bets':<6} {'WR':<7} {'PnL':<10} {'AccLoss':<8}",
        "-" * 70,
    ]

    for pattern, row in patterns.iterrows():
        status, acc_loss = '-', 0.0
        if session is not None:
            lifecycle = session.lifecycle(pattern)
            status = lifecycle.status.value
            acc_loss = lifecycle.state.accumulated_loss
        lines.append(
            f"{pattern:<10} {status:<10} {row['evaluations']:<7} {row['bets']:<6} "
            f"{row['bet_win_rate']:<7.1%} {row['bet_pnl']:<10.1f} {acc_loss:<8.1f}"
        )

    if session is not None and session.halted:
        lines.extend(["", f"SESSION HALTED: {session.halt_reason}"])

    return "\n".join(lines)
