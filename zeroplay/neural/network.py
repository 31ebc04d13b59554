"""Reference policy/value network.

Implements the dual-headed network from the AlphaZero paper for any game
whose observation is a (channels, height, width) stack of planes:
- Shared residual tower
- Policy head (action logits)
- Value head (evaluation for the player to move)
"""

from typing import Optional, Tuple

import torch
import torch.nn as nn
import torch.nn.functional as F

from .blocks import ConvBlock, PolicyHead, ResidualBlock, ValueHead
from ..config import NetworkConfig
from ..games.base import Game

# Use -1e4 instead of -inf for FP16 numerical stability
MASK_VALUE = -1e4


class PolicyValueNetwork(nn.Module):
    """Residual policy/value network.

    Architecture:
        Input (C, H, W)
            |
        ConvBlock (3x3, num_filters)
            |
        ResidualBlock × num_blocks
            |
        +-------+-------+
        |               |
    PolicyHead      ValueHead
        |               |
    (num_actions,)     (1,)
    """

    def __init__(
        self,
        input_shape: Tuple[int, int, int],
        num_actions: int,
        num_filters: int = 64,
        num_blocks: int = 5,
        policy_filters: int = 2,
        value_filters: int = 1,
        value_hidden: int = 64
    ):
        """Initialize network.

        Args:
            input_shape: Observation shape (channels, height, width)
            num_actions: Size of the action space
            num_filters: Number of filters in residual tower
            num_blocks: Number of residual blocks
            policy_filters: Filters in policy head conv layer
            value_filters: Filters in value head conv layer
            value_hidden: Hidden layer size in value head
        """
        super().__init__()
        channels, height, width = input_shape
        self.input_shape = tuple(input_shape)
        self.num_actions = num_actions
        self.num_filters = num_filters
        self.num_blocks = num_blocks

        self.input_conv = ConvBlock(channels, num_filters)
        self.residual_tower = nn.Sequential(*[ResidualBlock(num_filters) for _ in range(num_blocks)])
        self.policy_head = PolicyHead(num_filters, height * width, num_actions, policy_filters)
        self.value_head = ValueHead(num_filters, height * width, value_filters, value_hidden)

    def forward(
        self,
        x: torch.Tensor,
        legal_mask: Optional[torch.Tensor] = None
    ) -> Tuple[torch.Tensor, torch.Tensor]:
        """Forward pass.

        Args:
            x: Observations (batch, C, H, W)
            legal_mask: Optional mask (batch, num_actions); illegal logits
                are set to a large negative value

        Returns:
            Tuple of (policy_logits (batch, num_actions), value (batch, 1))
        """
        x = self.residual_tower(self.input_conv(x))
        policy_logits = self.policy_head(x)
        if legal_mask is not None:
            policy_logits = policy_logits.masked_fill(legal_mask == 0, MASK_VALUE)
        value = self.value_head(x)
        return policy_logits, value

    def predict(
        self,
        x: torch.Tensor,
        legal_mask: torch.Tensor
    ) -> Tuple[torch.Tensor, torch.Tensor]:
        """Policy probabilities (batch, num_actions) and values (batch,)."""
        policy_logits, value = self.forward(x, legal_mask)
        policy = F.softmax(policy_logits.float(), dim=-1)
        return policy, value.squeeze(-1).float()


def create_network(game: Game, config: Optional[NetworkConfig] = None, device: str = "cpu") -> PolicyValueNetwork:
    """Build a network sized for ``game``."""
    config = config or NetworkConfig()
    network = PolicyValueNetwork(
        input_shape=game.observation_shape,
        num_actions=game.num_actions,
        num_filters=config.num_filters,
        num_blocks=config.num_blocks,
        policy_filters=config.policy_filters,
        value_filters=config.value_filters,
        value_hidden=config.value_hidden,
    )
    return network.to(device)


def count_parameters(model: nn.Module) -> int:
    """Count trainable parameters in a model."""
    return sum(p.numel() for p in model.parameters() if p.requires_grad)
