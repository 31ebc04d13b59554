"""Network building blocks.

Implements:
- ConvBlock: Convolution + BatchNorm + ReLU
- ResidualBlock: Two convolutions with a skip connection
- PolicyHead / ValueHead: Output heads for an H x W board
"""

import torch
import torch.nn as nn


class ConvBlock(nn.Module):
    """Convolution block: Conv2d -> BatchNorm -> ReLU."""

    def __init__(self, in_channels: int, out_channels: int, kernel_size: int = 3, padding: int = 1):
        super().__init__()
        self.conv = nn.Conv2d(in_channels, out_channels, kernel_size=kernel_size,
                              padding=padding, bias=False)
        self.bn = nn.BatchNorm2d(out_channels)
        self.relu = nn.ReLU(inplace=True)

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        return self.relu(self.bn(self.conv(x)))


class ResidualBlock(nn.Module):
    """Residual block with skip connection.

    Architecture:
        x -> Conv -> BN -> ReLU -> Conv -> BN -> (+x) -> ReLU
    """

    def __init__(self, num_filters: int):
        super().__init__()
        self.conv1 = nn.Conv2d(num_filters, num_filters, kernel_size=3, padding=1, bias=False)
        self.bn1 = nn.BatchNorm2d(num_filters)
        self.conv2 = nn.Conv2d(num_filters, num_filters, kernel_size=3, padding=1, bias=False)
        self.bn2 = nn.BatchNorm2d(num_filters)
        self.relu = nn.ReLU(inplace=True)

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        identity = x
        out = self.relu(self.bn1(self.conv1(x)))
        out = self.bn2(self.conv2(out))
        return self.relu(out + identity)


class PolicyHead(nn.Module):
    """Policy head: Conv(1x1) -> BN -> ReLU -> Flatten -> FC(num_actions).

    Outputs raw logits of shape (batch, num_actions).
    """

    def __init__(self, in_channels: int, board_size: int, num_actions: int, num_filters: int = 2):
        """Initialize PolicyHead.

        Args:
            in_channels: Channels coming out of the residual tower
            board_size: Number of board cells (H * W)
            num_actions: Size of the action space
            num_filters: Filters of the 1x1 convolution
        """
        super().__init__()
        self.conv = nn.Conv2d(in_channels, num_filters, kernel_size=1, bias=False)
        self.bn = nn.BatchNorm2d(num_filters)
        self.relu = nn.ReLU(inplace=True)
        self.fc = nn.Linear(num_filters * board_size, num_actions)

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        x = self.relu(self.bn(self.conv(x)))
        return self.fc(x.flatten(1))


class ValueHead(nn.Module):
    """Value head: Conv(1x1) -> BN -> ReLU -> FC(hidden) -> ReLU -> FC(1) -> Tanh."""

    def __init__(self, in_channels: int, board_size: int, num_filters: int = 1, hidden_size: int = 64):
        super().__init__()
        self.conv = nn.Conv2d(in_channels, num_filters, kernel_size=1, bias=False)
        self.bn = nn.BatchNorm2d(num_filters)
        self.relu = nn.ReLU(inplace=True)
        self.fc1 = nn.Linear(num_filters * board_size, hidden_size)
        self.fc2 = nn.Linear(hidden_size, 1)
        self.tanh = nn.Tanh()

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        x = self.relu(self.bn(self.conv(x)))
        x = self.relu(self.fc1(x.flatten(1)))
        return self.tanh(self.fc2(x))
