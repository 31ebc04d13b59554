"""Loss functions for training the policy/value network.

Implements:
- Policy loss: Cross-entropy between the MCTS policy and the masked network policy
- Value loss: MSE between the game outcome and the predicted value
- Invalid-action penalty: Probability mass the unmasked network puts on illegal actions
- Combined loss: L = L_policy + c_value * L_value + c_invalid * L_invalid

All terms are weighted means using per-sample weights.
"""

from typing import Dict, Optional, Tuple

import torch
import torch.nn as nn
import torch.nn.functional as F

from .network import MASK_VALUE


def _weighted_mean(values: torch.Tensor, weights: torch.Tensor) -> torch.Tensor:
    return (values * weights).sum() / weights.sum().clamp_min(1e-8)


class AlphaZeroLoss(nn.Module):
    """Combined policy, value and invalid-action loss.

    L = L_policy + c_value * L_value + c_invalid * L_invalid

    Where:
        L_policy = -π^T · log(p)           (cross-entropy with MCTS policy)
        L_value = (z - v)²                 (MSE with game outcome)
        L_invalid = Σ_{a illegal} p_raw(a) (mass on illegal actions)
    """

    def __init__(self, value_weight: float = 1.0, nonvalidity_penalty: float = 1.0):
        super().__init__()
        self.value_weight = value_weight
        self.nonvalidity_penalty = nonvalidity_penalty

    def forward(
        self,
        policy_logits: torch.Tensor,
        target_policy: torch.Tensor,
        value: torch.Tensor,
        target_value: torch.Tensor,
        legal_mask: torch.Tensor,
        weights: Optional[torch.Tensor] = None
    ) -> Tuple[torch.Tensor, Dict[str, float]]:
        """Compute the combined loss.

        Args:
            policy_logits: Unmasked network logits (batch, num_actions)
            target_policy: MCTS visit distribution (batch, num_actions)
            value: Network value output (batch, 1) or (batch,)
            target_value: Game outcome (batch,)
            legal_mask: Legal action mask (batch, num_actions)
            weights: Sample weights (batch,); uniform if omitted

        Returns:
            Tuple of (total_loss, metrics)
        """
        policy_logits = policy_logits.float()
        if weights is None:
            weights = torch.ones_like(target_value)

        masked_logits = policy_logits.masked_fill(legal_mask == 0, MASK_VALUE)
        log_probs = F.log_softmax(masked_logits, dim=-1)
        p_loss = _weighted_mean(-(target_policy * log_probs).sum(dim=-1), weights)

        if value.dim() == 2:
            value = value.squeeze(-1)
        v_loss = _weighted_mean((value.float() - target_value) ** 2, weights)

        raw_probs = F.softmax(policy_logits, dim=-1)
        invalid_loss = _weighted_mean((raw_probs * (1 - legal_mask)).sum(dim=-1), weights)

        total_loss = p_loss + self.value_weight * v_loss + self.nonvalidity_penalty * invalid_loss

        with torch.no_grad():
            net_entropy = _weighted_mean(-(log_probs.exp() * log_probs * legal_mask).sum(dim=-1), weights)
            target_log = torch.log(target_policy.clamp_min(1e-12))
            target_entropy = _weighted_mean(-(target_policy * target_log).sum(dim=-1), weights)

        metrics = {
            'loss': total_loss.item(),
            'policy_loss': p_loss.item(),
            'value_loss': v_loss.item(),
            'invalid_loss': invalid_loss.item(),
            'network_entropy': net_entropy.item(),
            'target_entropy': target_entropy.item(),
        }
        return total_loss, metrics


def compute_policy_accuracy(
    policy_logits: torch.Tensor,
    target_policy: torch.Tensor,
    legal_mask: torch.Tensor
) -> float:
    """Fraction of positions where the network's top move matches the MCTS top move."""
    masked_logits = policy_logits.masked_fill(legal_mask == 0, MASK_VALUE)
    correct = (masked_logits.argmax(dim=-1) == target_policy.argmax(dim=-1)).float().mean()
    return correct.item()
