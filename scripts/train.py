#!/usr/bin/env python3
"""Main training entry point."""

import argparse
import logging
import sys
from pathlib import Path

import torch

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from zeroplay import PROFILES, TrainingAborted, TrainingCoordinator, with_updates
from zeroplay.evaluation import Duel, MCTSSpec, MinMaxSpec, RandomSpec
from zeroplay.games import AVAILABLE_GAMES
from zeroplay.neural import count_parameters


def setup_logging(log_dir: str, verbose: bool = False):
    """Setup logging configuration."""
    Path(log_dir).mkdir(parents=True, exist_ok=True)

    level = logging.DEBUG if verbose else logging.INFO
    format_str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    logging.basicConfig(
        level=level,
        format=format_str,
        handlers=[
            logging.StreamHandler(),
            logging.FileHandler(f"{log_dir}/training.log")
        ]
    )


def build_benchmarks(params, num_games: int):
    """Duels of the best network against the fixed baselines."""
    if num_games <= 0:
        return []
    mcts = params.arena.mcts if params.arena is not None else params.selfplay.mcts
    workers = params.selfplay.num_workers
    return [
        Duel("vs-random", MCTSSpec("best", mcts, name="best"), RandomSpec(),
             num_games=num_games, num_workers=workers, max_moves=params.selfplay.max_moves),
        Duel("vs-minmax", MCTSSpec("best", mcts, name="best"), MinMaxSpec(depth=2, temperature=0.2),
             num_games=num_games, num_workers=workers, max_moves=params.selfplay.max_moves),
    ]


def main():
    parser = argparse.ArgumentParser(description="Train a policy/value network by self-play")

    parser.add_argument("--game", type=str, default="tictactoe", choices=sorted(AVAILABLE_GAMES),
                        help="Game to train on")
    parser.add_argument("--profile", type=str, default="debug", choices=sorted(PROFILES),
                        help="Parameter preset")
    parser.add_argument("--iterations", type=int, default=None,
                        help="Number of training iterations (default: from profile)")
    parser.add_argument("--games", type=int, default=None,
                        help="Self-play games per iteration (default: from profile)")
    parser.add_argument("--workers", type=int, default=None,
                        help="Concurrent search workers (default: from profile)")
    parser.add_argument("--simulations", type=int, default=None,
                        help="MCTS simulations per move (default: from profile)")
    parser.add_argument("--batch-size", type=int, default=None,
                        help="Training batch size (default: from profile)")
    parser.add_argument("--inference-batch-size", type=int, default=None,
                        help="Inference scheduler batch size (default: from profile)")
    parser.add_argument("--arena-games", type=int, default=None,
                        help="Arena games per iteration; 0 promotes every iteration")
    parser.add_argument("--benchmark-games", type=int, default=0,
                        help="Games per benchmark duel (0 disables benchmarks)")
    parser.add_argument("--seed", type=int, default=None,
                        help="Random seed (default: from profile)")

    parser.add_argument("--checkpoint-dir", type=str, default="checkpoints",
                        help="Directory for checkpoints")
    parser.add_argument("--log-dir", type=str, default="logs",
                        help="Directory for logs and metrics")
    parser.add_argument("--resume", action="store_true",
                        help="Resume from the latest checkpoint in --checkpoint-dir")
    parser.add_argument("--device", type=str, default=None,
                        help="Device (cuda or cpu; default: from profile)")
    parser.add_argument("--no-progress", action="store_true",
                        help="Disable progress bars")
    parser.add_argument("--verbose", action="store_true",
                        help="Verbose logging")

    args = parser.parse_args()

    setup_logging(args.log_dir, args.verbose)
    logger = logging.getLogger(__name__)

    # Resolve settings with priority: CLI args > profile
    overrides = {
        'checkpoint_dir': args.checkpoint_dir,
        'log_dir': args.log_dir,
        'show_progress': not args.no_progress,
    }
    if args.iterations is not None:
        overrides['num_iters'] = args.iterations
    if args.games is not None:
        overrides['selfplay__num_games'] = args.games
    if args.workers is not None:
        overrides['selfplay__num_workers'] = args.workers
    if args.simulations is not None:
        overrides['selfplay__mcts__num_simulations'] = args.simulations
    if args.batch_size is not None:
        overrides['learning__batch_size'] = args.batch_size
    if args.inference_batch_size is not None:
        overrides['inference__batch_size'] = args.inference_batch_size
    if args.seed is not None:
        overrides['seed'] = args.seed
    if args.device is not None:
        overrides['device'] = args.device
    if args.arena_games == 0:
        overrides['arena'] = None
    elif args.arena_games is not None:
        overrides['arena__num_games'] = args.arena_games
    params = with_updates(PROFILES[args.profile], **overrides)

    # Check device
    if params.device == "cuda" and not torch.cuda.is_available():
        logger.warning("CUDA not available, using CPU")
        params = params.updated(device="cpu")

    game = AVAILABLE_GAMES[args.game]()
    coordinator = TrainingCoordinator(
        game,
        params,
        benchmarks=build_benchmarks(params, args.benchmark_games),
    )
    logger.info(f"Game: {args.game}, profile: {args.profile}, device: {params.device}")
    logger.info(f"Network parameters: {count_parameters(coordinator.best_network):,}")

    if args.resume:
        coordinator.resume()

    try:
        coordinator.run()
    except TrainingAborted as e:
        logger.error(str(e))
        logger.error("Resume from the last checkpoint with --resume")
        sys.exit(1)


if __name__ == "__main__":
    main()
