"""Arena for duels between agents.

A duel plays ``num_games`` matches between a contender and a baseline,
concurrently on a worker pool. Networks used by either side are served by
one inference scheduler hosting every required model.
"""

import logging
import time
import zlib
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np

from .players import Player, PlayerSpec
from ..config import ColorPolicy, InferenceConfig
from ..games.base import Game
from ..selfplay.actor import ActorPool, job_chunks
from ..selfplay.inference_server import BatchedEvaluator, InferenceScheduler

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Duel:
    """A series of matches between two players."""
    name: str
    contender: PlayerSpec
    baseline: PlayerSpec
    num_games: int = 40
    color_policy: ColorPolicy = ColorPolicy.ALTERNATE
    flip_probability: float = 0.0  # Chance of replacing a position with a symmetric one
    reset_every: Optional[int] = 1  # Consecutive matches played by the same pair of players; None for all
    num_workers: int = 8
    max_moves: int = 512


@dataclass
class MatchResult:
    """Result of a single match."""
    contender_first: bool
    reward: float  # From the contender's perspective
    num_moves: int


@dataclass
class DuelOutcome:
    """Statistics from a duel, from the contender's perspective."""
    name: str
    contender: str
    baseline: str
    wins: int = 0
    draws: int = 0
    losses: int = 0
    rewards: List[float] = field(default_factory=list)
    redundancy: float = 0.0
    avg_game_length: float = 0.0
    elapsed: float = 0.0

    @property
    def total(self) -> int:
        return self.wins + self.losses + self.draws

    @property
    def win_rate(self) -> float:
        """Score with draws counted as half a win."""
        if self.total == 0:
            return 0.0
        return (self.wins + 0.5 * self.draws) / self.total

    @property
    def avg_reward(self) -> float:
        if not self.rewards:
            return 0.0
        return float(np.mean(self.rewards))

    def elo_difference(self) -> float:
        """Estimate Elo difference from the score."""
        score = self.win_rate
        if score <= 0:
            return -400.0
        if score >= 1:
            return 400.0
        return float(-400 * np.log10(1 / score - 1))

    def summary(self) -> dict:
        return {
            'name': self.name,
            'wins': self.wins,
            'draws': self.draws,
            'losses': self.losses,
            'win_rate': self.win_rate,
            'avg_reward': self.avg_reward,
            'redundancy': self.redundancy,
            'avg_game_length': self.avg_game_length,
        }


def compute_redundancy(states: Sequence[Any]) -> float:
    """1 - distinct / total over the non-initial states met in a duel."""
    if not states:
        return 0.0
    return 1.0 - len(set(states)) / len(states)


def should_promote(outcome: DuelOutcome, update_threshold: float) -> bool:
    """The contender replaces the best network only above the threshold."""
    return outcome.win_rate > update_threshold


class Arena:
    """Plays matches and duels between agents."""

    def __init__(
        self,
        game: Game,
        inference: Optional[InferenceConfig] = None,
        seed: int = 0,
        show_progress: bool = True
    ):
        """Initialize arena.

        Args:
            game: Game rules
            inference: Scheduler settings for duels involving networks
            seed: Base random seed
            show_progress: Display progress bars
        """
        self.game = game
        self.inference = inference or InferenceConfig()
        self.seed = seed
        self.show_progress = show_progress

    def play_match(
        self,
        contender: Player,
        baseline: Player,
        contender_first: bool,
        rng: np.random.Generator,
        flip_probability: float = 0.0,
        max_moves: int = 512
    ) -> Tuple[MatchResult, List[Any]]:
        """Play one match.

        Returns:
            Tuple of (result, non-initial states in order of appearance)
        """
        game = self.game
        state = game.initial_state()
        first = game.current_player(state)
        seats = {first: contender if contender_first else baseline,
                 1 - first: baseline if contender_first else contender}
        contender_seat = first if contender_first else 1 - first

        states = []
        move_number = 0
        outcome = game.terminal_value(state)
        while outcome is None and move_number < max_moves:
            if flip_probability > 0 and rng.random() < flip_probability:
                variants = game.symmetries(state)
                if variants:
                    state = variants[rng.integers(len(variants))][0]
            player = seats[game.current_player(state)]
            action = player.select_action(state, move_number, rng)
            state = game.apply(state, action)
            states.append(state)
            move_number += 1
            outcome = game.terminal_value(state)

        if outcome is None:
            reward = 0.0
        elif game.current_player(state) == contender_seat:
            reward = float(outcome)
        else:
            reward = -float(outcome)
        return MatchResult(contender_first, reward, move_number), states

    def run_duel(
        self,
        duel: Duel,
        capabilities: Optional[Dict[str, Any]] = None,
        iteration: int = 0
    ) -> DuelOutcome:
        """Play every match of ``duel``.

        Args:
            duel: Duel description
            capabilities: Inference capabilities keyed by model name; must
                cover every model the two player specs use
            iteration: Training iteration, used for seeding and search schedules

        Returns:
            DuelOutcome
        """
        capabilities = capabilities or {}
        models = sorted(set(duel.contender.models()) | set(duel.baseline.models()))
        missing = [m for m in models if m not in capabilities]
        if missing:
            raise KeyError(f"Duel '{duel.name}' needs models {missing}")

        salt = zlib.crc32(duel.name.encode())
        chunks = job_chunks(duel.num_games, duel.reset_every)
        results: List[MatchResult] = []
        all_states: List[Any] = []
        start_time = time.time()

        def run(scheduler: Optional[InferenceScheduler]) -> None:
            evaluators = {m: BatchedEvaluator(scheduler, m) for m in models}

            def play(worker, chunk_index: int, attempt: int):
                rng = np.random.default_rng([self.seed, iteration, salt, chunk_index, attempt])
                contender = duel.contender.build(self.game, evaluators, rng, iteration)
                baseline = duel.baseline.build(self.game, evaluators, rng, iteration)
                matches = []
                for game_index in chunks[chunk_index]:
                    match_rng = np.random.default_rng([self.seed, iteration, salt, game_index, attempt])
                    matches.append(self.play_match(
                        contender,
                        baseline,
                        self._contender_first(duel.color_policy, game_index),
                        match_rng,
                        duel.flip_probability,
                        duel.max_moves,
                    ))
                return matches

            def store(chunk_index: int, matches) -> None:
                for result, states in matches:
                    results.append(result)
                    all_states.extend(states)

            pool = ActorPool(duel.num_workers, scheduler=scheduler, desc=duel.name,
                             show_progress=self.show_progress)
            pool.run(len(chunks), lambda worker_id: None, play, store, job_sizes=[len(c) for c in chunks])

        if models:
            needed = {m: capabilities[m] for m in models}
            with InferenceScheduler(needed, self.inference.batch_size,
                                    self.inference.batch_timeout, name=f"arena-{duel.name}",
                                    min_blocked_workers=self.inference.min_blocked_workers) as scheduler:
                run(scheduler)
        else:
            run(None)

        outcome = DuelOutcome(
            name=duel.name,
            contender=duel.contender.name,
            baseline=duel.baseline.name,
            rewards=[r.reward for r in results],
            redundancy=compute_redundancy(all_states),
            avg_game_length=float(np.mean([r.num_moves for r in results])) if results else 0.0,
            elapsed=time.time() - start_time,
        )
        for r in results:
            if r.reward > 0:
                outcome.wins += 1
            elif r.reward < 0:
                outcome.losses += 1
            else:
                outcome.draws += 1

        logger.info(
            f"Duel '{duel.name}': {outcome.contender} vs {outcome.baseline} "
            f"+{outcome.wins} ={outcome.draws} -{outcome.losses} "
            f"(win rate {outcome.win_rate:.3f}, redundancy {outcome.redundancy:.3f})"
        )
        return outcome

    @staticmethod
    def _contender_first(policy: ColorPolicy, game_index: int) -> bool:
        if policy == ColorPolicy.CONTENDER_FIRST:
            return True
        if policy == ColorPolicy.BASELINE_FIRST:
            return False
        return game_index % 2 == 0
