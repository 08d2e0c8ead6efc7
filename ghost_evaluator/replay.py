"""
Replay a block feed through a fresh session

Usage:
    python -m ghost_evaluator.replay blocks.csv
    python -m ghost_evaluator.replay blocks.json --config engine.json --output snapshot.json
    python -m ghost_evaluator.replay --synthetic 500 --seed 42 -v
"""
import argparse
import json
import logging
import sys

from .config import EngineConfig
from .errors import GhostEvaluatorError
from .evaluate import generate_report
from .recorder import SessionRecorder, load_blocks
from .session import TradingSession
from .synthetic_data import SyntheticBlockGenerator

log = logging.getLogger(__name__)


def load_config(path: str) -> EngineConfig:
    with open(path) as f:
        return EngineConfig.from_dict(json.load(f))


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description='Replay a block feed through the pattern engine')
    parser.add_argument('feed', nargs='?', help='Block feed (.json or .csv)')
    parser.add_argument('--config', help='Engine config JSON')
    parser.add_argument('--output', help='Write a session snapshot to this path')
    parser.add_argument('--synthetic', type=int, metavar='N', help='Generate N synthetic blocks instead of reading a feed')
    parser.add_argument('--seed', type=int, default=42, help='Seed for --synthetic')
    parser.add_argument('-v', '--verbose', action='store_true', help='Log every transition and indicator')
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
    )

    if not args.feed and not args.synthetic:
        parser.error('a feed path or --synthetic N is required')

    try:
        config = load_config(args.config) if args.config else EngineConfig()
        session = TradingSession(config)
    except (OSError, ValueError) as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        return 2

    if args.synthetic:
        blocks = SyntheticBlockGenerator(seed=args.seed).generate_blocks(
            args.synthetic, start_index=config.start_index
        )
    else:
        try:
            blocks = load_blocks(args.feed)
        except (OSError, ValueError) as e:
            print(f"Cannot read block feed: {e}", file=sys.stderr)
            return 2

    recorder = SessionRecorder().attach(session)
    try:
        session.run(blocks)
    except GhostEvaluatorError as e:
        log.error("Replay stopped: %s", e)
        print(generate_report(recorder, session))
        return 1

    print(generate_report(recorder, session))

    if args.output:
        recorder.save_snapshot(args.output)
        print(f"\nSnapshot saved to {args.output}")

    return 0


if __name__ == "__main__":
    sys.exit(main())
