"""Learning phase: fit the network to the samples of the memory buffer."""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import numpy as np
import torch
import torch.optim as optim
from torch.amp import GradScaler, autocast
from tqdm import tqdm

from .trajectory import Sample, TrainingBatch
from ..config import LearningConfig
from ..errors import NumericalDivergenceError
from ..games.base import Game
from ..neural.loss import AlphaZeroLoss, compute_policy_accuracy
from ..schedule import as_schedule

logger = logging.getLogger(__name__)


@dataclass
class LearningReport:
    """Summary of one learning phase."""
    num_samples: int = 0
    num_steps: int = 0
    learning_rate: float = 0.0
    initial_losses: Dict[str, float] = field(default_factory=dict)
    final_losses: Dict[str, float] = field(default_factory=dict)


def augment_with_symmetries(samples: List[Sample], game: Game) -> List[Sample]:
    """Add the symmetric variants of every sample."""
    augmented = list(samples)
    for sample in samples:
        for sym_state, perm in game.symmetries(sample.state):
            policy = np.zeros_like(sample.policy)
            policy[perm] = sample.policy
            augmented.append(Sample(
                state=sym_state,
                policy=policy,
                value=sample.value,
                moves_left=sample.moves_left,
                weight=sample.weight,
                count=sample.count,
            ))
    return augmented


class Learner:
    """Trains a policy/value network.

    Handles:
    - Minibatch iteration over weighted samples
    - Forward/backward passes with optional mixed precision
    - Divergence detection
    - Loss evaluation for memory analysis
    """

    def __init__(
        self,
        network: torch.nn.Module,
        game: Game,
        config: Optional[LearningConfig] = None,
        device: str = "cpu",
        show_progress: bool = False
    ):
        """Initialize learner.

        Args:
            network: Network to train (updated in place)
            game: Game used to encode samples
            config: Learning configuration
            device: Device to train on
            show_progress: Display a progress bar while fitting
        """
        self.network = network.to(device)
        self.game = game
        self.config = config or LearningConfig()
        self.device = device
        self.show_progress = show_progress
        self._learning_rate = as_schedule(self.config.learning_rate)

        # Optimizer: SGD with momentum (as in AlphaZero paper)
        self.optimizer = optim.SGD(
            self.network.parameters(),
            lr=self._learning_rate(0),
            momentum=self.config.momentum,
            weight_decay=self.config.weight_decay
        )

        self.loss_fn = AlphaZeroLoss(
            value_weight=self.config.value_weight,
            nonvalidity_penalty=self.config.nonvalidity_penalty,
        )

        # Mixed precision training
        self.use_amp = self.config.use_amp and str(device).startswith("cuda")
        self.scaler = GradScaler('cuda') if self.use_amp else None

        self.global_step = 0

    def _to_tensors(self, batch: TrainingBatch):
        return (
            torch.from_numpy(batch.observations).to(self.device, non_blocking=True),
            torch.from_numpy(batch.legal_masks).to(self.device, non_blocking=True),
            torch.from_numpy(batch.policies).to(self.device, non_blocking=True),
            torch.from_numpy(batch.values).to(self.device, non_blocking=True),
            torch.from_numpy(batch.weights).to(self.device, non_blocking=True),
        )

    def train_step(self, batch: TrainingBatch) -> Dict[str, float]:
        """Execute a single training step.

        Raises:
            NumericalDivergenceError: If the loss is NaN or infinite
        """
        self.network.train()
        obs, masks, policies, values, weights = self._to_tensors(batch)

        self.optimizer.zero_grad()
        if self.scaler is not None:
            with autocast('cuda'):
                policy_logits, value_pred = self.network(obs)
            loss, metrics = self.loss_fn(policy_logits, policies, value_pred, values, masks, weights)
            self._check_finite(loss)
            self.scaler.scale(loss).backward()
            self.scaler.unscale_(self.optimizer)
            torch.nn.utils.clip_grad_norm_(self.network.parameters(), self.config.max_grad_norm)
            self.scaler.step(self.optimizer)
            self.scaler.update()
        else:
            policy_logits, value_pred = self.network(obs)
            loss, metrics = self.loss_fn(policy_logits, policies, value_pred, values, masks, weights)
            self._check_finite(loss)
            loss.backward()
            torch.nn.utils.clip_grad_norm_(self.network.parameters(), self.config.max_grad_norm)
            self.optimizer.step()

        with torch.no_grad():
            metrics['policy_accuracy'] = compute_policy_accuracy(policy_logits.float(), policies, masks)
        self.global_step += 1
        return metrics

    def _check_finite(self, loss: torch.Tensor) -> None:
        if not torch.isfinite(loss).item():
            raise NumericalDivergenceError(
                f"Loss became {loss.item()} at training step {self.global_step}")

    def fit(
        self,
        samples: List[Sample],
        iteration: int = 0,
        rng: Optional[np.random.Generator] = None
    ) -> LearningReport:
        """Train on ``samples`` for ``num_epochs`` epochs.

        Args:
            samples: Training samples (possibly position-averaged)
            iteration: Training iteration, used for the learning rate schedule
            rng: Random generator used to shuffle minibatches

        Returns:
            LearningReport
        """
        rng = rng if rng is not None else np.random.default_rng()
        if self.config.use_symmetries:
            samples = augment_with_symmetries(samples, self.game)

        lr = float(self._learning_rate(iteration))
        for group in self.optimizer.param_groups:
            group['lr'] = lr

        report = LearningReport(num_samples=len(samples), learning_rate=lr)
        if not samples:
            logger.warning("No samples to learn from")
            return report

        report.initial_losses = self.evaluate(samples)
        batch_size = min(self.config.batch_size, len(samples))
        steps_per_epoch = len(samples) // batch_size
        total_steps = steps_per_epoch * self.config.num_epochs
        if self.config.max_steps is not None:
            total_steps = min(total_steps, self.config.max_steps)

        step = 0
        with tqdm(total=total_steps, desc="Learning", unit="step", disable=not self.show_progress) as pbar:
            while step < total_steps:
                order = rng.permutation(len(samples))
                for start in range(0, steps_per_epoch * batch_size, batch_size):
                    if step >= total_steps:
                        break
                    batch = TrainingBatch.from_samples(
                        [samples[i] for i in order[start:start + batch_size]], self.game)
                    metrics = self.train_step(batch)
                    step += 1
                    pbar.update(1)
                    pbar.set_postfix(loss=f"{metrics['loss']:.3f}")

        self.network.eval()
        report.num_steps = step
        report.final_losses = self.evaluate(samples)
        logger.info(
            f"Learning: {step} steps on {len(samples)} samples, lr={lr:g}, "
            f"loss {report.initial_losses['loss']:.4f} -> {report.final_losses['loss']:.4f}"
        )
        return report

    def evaluate(self, samples: List[Sample], batch_size: Optional[int] = None) -> Dict[str, float]:
        """Weighted mean losses of the network on ``samples`` (no update).

        Raises:
            NumericalDivergenceError: If the loss is NaN or infinite
        """
        if not samples:
            return {}
        batch_size = batch_size or self.config.batch_size
        was_training = self.network.training
        self.network.eval()
        totals: Dict[str, float] = {}
        total_weight = 0.0
        try:
            with torch.no_grad():
                for start in range(0, len(samples), batch_size):
                    batch = TrainingBatch.from_samples(samples[start:start + batch_size], self.game)
                    obs, masks, policies, values, weights = self._to_tensors(batch)
                    policy_logits, value_pred = self.network(obs)
                    loss, metrics = self.loss_fn(policy_logits, policies, value_pred, values, masks, weights)
                    self._check_finite(loss)
                    weight = float(batch.weights.sum())
                    total_weight += weight
                    for key, value in metrics.items():
                        totals[key] = totals.get(key, 0.0) + value * weight
        finally:
            self.network.train(was_training)
        return {key: value / max(total_weight, 1e-8) for key, value in totals.items()}

    def state_dict(self) -> dict:
        state = {
            'global_step': self.global_step,
            'optimizer_state_dict': self.optimizer.state_dict(),
        }
        if self.scaler is not None:
            state['scaler_state_dict'] = self.scaler.state_dict()
        return state

    def load_state_dict(self, state: dict) -> None:
        self.global_step = state['global_step']
        self.optimizer.load_state_dict(state['optimizer_state_dict'])
        if self.scaler is not None and 'scaler_state_dict' in state:
            self.scaler.load_state_dict(state['scaler_state_dict'])
