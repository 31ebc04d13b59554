"""Reference policy/value network and its inference capability."""

from .blocks import ConvBlock, PolicyHead, ResidualBlock, ValueHead
from .inference import InferenceCapability, NetworkInference
from .loss import AlphaZeroLoss, compute_policy_accuracy
from .network import PolicyValueNetwork, count_parameters, create_network

__all__ = [
    "ConvBlock",
    "PolicyHead",
    "ResidualBlock",
    "ValueHead",
    "InferenceCapability",
    "NetworkInference",
    "AlphaZeroLoss",
    "compute_policy_accuracy",
    "PolicyValueNetwork",
    "count_parameters",
    "create_network",
]
