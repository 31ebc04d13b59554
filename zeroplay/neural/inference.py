"""Inference capability: batched network evaluation of game states."""

import logging
from typing import Any, List, Protocol, Sequence, Tuple

import numpy as np
import torch
from torch.amp import autocast

from ..errors import ResourceExhaustedError
from ..games.base import Game

logger = logging.getLogger(__name__)


class InferenceCapability(Protocol):
    """Anything that can evaluate a batch of states."""

    def infer(self, states: Sequence[Any]) -> List[Tuple[np.ndarray, float]]:
        """Return one (policy, value) pair per state.

        Policies cover the full action space; values are from the
        perspective of the player to move.
        """
        ...


class NetworkInference:
    """Inference capability backed by a torch network."""

    def __init__(
        self,
        network: torch.nn.Module,
        game: Game,
        device: str = "cpu",
        use_amp: bool = True
    ):
        """Initialize inference.

        Args:
            network: Policy/value network
            game: Game used to encode states
            device: Device to run inference on
            use_amp: Use mixed precision (FP16) for inference
        """
        self.network = network
        self.game = game
        self.device = device
        self.use_amp = use_amp and str(device).startswith("cuda")  # Only use AMP on CUDA
        self.network.eval()

    def infer(self, states: Sequence[Any]) -> List[Tuple[np.ndarray, float]]:
        if not states:
            return []
        observations = np.stack([self.game.encode(s) for s in states]).astype(np.float32)
        legal_masks = np.stack([self.game.legal_mask(s) for s in states])

        try:
            obs_tensor = torch.from_numpy(observations).to(self.device)
            mask_tensor = torch.from_numpy(legal_masks).to(self.device)
            with torch.no_grad():
                if self.use_amp:
                    with autocast('cuda'):
                        policies, values = self.network.predict(obs_tensor, mask_tensor)
                else:
                    policies, values = self.network.predict(obs_tensor, mask_tensor)
        except torch.cuda.OutOfMemoryError as e:
            torch.cuda.empty_cache()
            raise ResourceExhaustedError(f"Out of memory on a batch of {len(states)}") from e

        policies = policies.cpu().numpy()
        values = values.cpu().numpy()
        return [(policies[i], float(values[i])) for i in range(len(states))]
