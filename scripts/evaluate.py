#!/usr/bin/env python3
"""Evaluate a trained network against a baseline player."""

import argparse
import logging
import sys
from pathlib import Path

import torch

sys.path.insert(0, str(Path(__file__).parent.parent))

from zeroplay import MCTSConfig, NetworkConfig
from zeroplay.evaluation import Arena, Duel, MCTSSpec, MinMaxSpec, NetworkSpec, RandomSpec, RolloutSpec
from zeroplay.games import AVAILABLE_GAMES
from zeroplay.neural import NetworkInference, create_network


def main():
    parser = argparse.ArgumentParser(description="Evaluate a trained network")

    parser.add_argument("--checkpoint", type=str, required=True,
                        help="Path to a training checkpoint")
    parser.add_argument("--game", type=str, default="tictactoe", choices=sorted(AVAILABLE_GAMES),
                        help="Game the network was trained on")
    parser.add_argument("--opponent", type=str, default="random",
                        choices=["random", "minmax", "rollouts", "network"],
                        help="Opponent type (network: the same network without search)")
    parser.add_argument("--games", type=int, default=100,
                        help="Number of games to play")
    parser.add_argument("--simulations", type=int, default=100,
                        help="MCTS simulations per move")
    parser.add_argument("--minmax-depth", type=int, default=2,
                        help="Search depth of the minmax opponent")
    parser.add_argument("--workers", type=int, default=8,
                        help="Concurrent matches")
    parser.add_argument("--device", type=str, default="cuda",
                        help="Device for inference")

    args = parser.parse_args()
    logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    # Check device
    if args.device == "cuda" and not torch.cuda.is_available():
        print("CUDA not available, using CPU")
        args.device = "cpu"

    # Load model
    print(f"Loading model from {args.checkpoint}...")
    state = torch.load(args.checkpoint, map_location=args.device, weights_only=False)

    game = AVAILABLE_GAMES[args.game]()
    network_config = NetworkConfig(**state.get('network_config', {}))
    network = create_network(game, network_config, args.device)
    network.load_state_dict(state['best_network_state_dict'])
    network.eval()

    mcts_config = MCTSConfig(num_simulations=args.simulations, dirichlet_epsilon=0.0, temperature=0.0)
    opponents = {
        'random': RandomSpec(),
        'minmax': MinMaxSpec(depth=args.minmax_depth, temperature=0.2),
        'rollouts': RolloutSpec(mcts=mcts_config),
        'network': NetworkSpec("best", name="Network"),
    }
    duel = Duel(
        name=f"vs-{args.opponent}",
        contender=MCTSSpec("best", mcts_config, name="ZeroPlay"),
        baseline=opponents[args.opponent],
        num_games=args.games,
        num_workers=args.workers,
    )

    print(f"\nEvaluating against {duel.baseline.name} ({args.games} games)...")
    arena = Arena(game)
    stats = arena.run_duel(duel, {"best": NetworkInference(network, game, args.device)})

    print(f"\nResults vs {duel.baseline.name}:")
    print(f"  Wins: {stats.wins}")
    print(f"  Draws: {stats.draws}")
    print(f"  Losses: {stats.losses}")
    print(f"  Score: {stats.win_rate:.1%}")
    print(f"  Estimated Elo diff: {stats.elo_difference():+.0f}")
    print(f"  Redundancy: {stats.redundancy:.1%}")


if __name__ == "__main__":
    main()
