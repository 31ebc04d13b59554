"""Tests for the neural network module."""

import numpy as np
import pytest
import torch

from zeroplay.config import NetworkConfig
from zeroplay.errors import ResourceExhaustedError
from zeroplay.games import Nim
from zeroplay.neural import (
    AlphaZeroLoss,
    ConvBlock,
    NetworkInference,
    PolicyHead,
    PolicyValueNetwork,
    ResidualBlock,
    ValueHead,
    compute_policy_accuracy,
    count_parameters,
    create_network,
)

SMALL = NetworkConfig(num_filters=8, num_blocks=1, value_hidden=8)


class TestBlocks:
    """Tests for the building blocks."""

    def test_conv_block(self):
        block = ConvBlock(3, 16)
        assert block(torch.randn(2, 3, 3, 3)).shape == (2, 16, 3, 3)

    def test_residual_block(self):
        block = ResidualBlock(16)
        x = torch.randn(2, 16, 3, 3)
        assert block(x).shape == x.shape

    def test_heads(self):
        x = torch.randn(2, 16, 3, 3)
        assert PolicyHead(16, board_size=9, num_actions=9)(x).shape == (2, 9)
        value = ValueHead(16, board_size=9, hidden_size=8)(x)
        assert value.shape == (2, 1)
        assert torch.all(value.abs() <= 1)


class TestPolicyValueNetwork:
    """Tests for PolicyValueNetwork."""

    def test_output_shapes(self, tictactoe):
        network = create_network(tictactoe, SMALL)
        logits, value = network(torch.randn(4, *tictactoe.observation_shape))
        assert logits.shape == (4, 9)
        assert value.shape == (4, 1)

    def test_non_square_board(self):
        game = Nim(num_stones=7)
        network = create_network(game, SMALL)
        logits, _ = network(torch.randn(2, *game.observation_shape))
        assert logits.shape == (2, game.num_actions)

    def test_predict_masks_illegal_actions(self, tictactoe):
        network = create_network(tictactoe, SMALL).eval()
        mask = torch.zeros(1, 9)
        mask[0, [2, 5]] = 1
        policy, value = network.predict(torch.randn(1, *tictactoe.observation_shape), mask)
        assert policy.shape == (1, 9)
        assert value.shape == (1,)
        assert policy[0, [2, 5]].sum().item() == pytest.approx(1.0, abs=1e-5)

    def test_count_parameters(self, tictactoe):
        network = create_network(tictactoe, SMALL)
        assert count_parameters(network) > 0
        bigger = create_network(tictactoe, SMALL.updated(num_blocks=3))
        assert count_parameters(bigger) > count_parameters(network)


class TestAlphaZeroLoss:
    """Tests for AlphaZeroLoss."""

    def test_metrics(self):
        loss_fn = AlphaZeroLoss()
        logits = torch.randn(4, 3)
        target = torch.tensor([[1.0, 0.0, 0.0]] * 4)
        mask = torch.ones(4, 3)
        loss, metrics = loss_fn(logits, target, torch.zeros(4, 1), torch.ones(4), mask)
        assert torch.isfinite(loss)
        assert metrics['value_loss'] == pytest.approx(1.0)
        assert metrics['invalid_loss'] == pytest.approx(0.0)
        assert metrics['target_entropy'] == pytest.approx(0.0, abs=1e-6)

    def test_invalid_action_penalty(self):
        logits = torch.tensor([[0.0, 0.0]])
        mask = torch.tensor([[1.0, 0.0]])
        target = torch.tensor([[1.0, 0.0]])
        _, metrics = AlphaZeroLoss()(logits, target, torch.zeros(1), torch.zeros(1), mask)
        assert metrics['invalid_loss'] == pytest.approx(0.5)
        assert metrics['policy_loss'] == pytest.approx(0.0, abs=1e-5)

    def test_weights(self):
        loss_fn = AlphaZeroLoss(value_weight=1.0, nonvalidity_penalty=0.0)
        logits = torch.zeros(2, 2)
        target = torch.tensor([[0.5, 0.5], [0.5, 0.5]])
        mask = torch.ones(2, 2)
        value = torch.zeros(2)
        target_value = torch.tensor([1.0, 0.0])
        _, uniform = loss_fn(logits, target, value, target_value, mask)
        _, weighted = loss_fn(logits, target, value, target_value, mask, torch.tensor([3.0, 1.0]))
        assert uniform['value_loss'] == pytest.approx(0.5)
        assert weighted['value_loss'] == pytest.approx(0.75)

    def test_policy_accuracy(self):
        logits = torch.tensor([[2.0, 1.0], [0.0, 1.0]])
        target = torch.tensor([[1.0, 0.0], [1.0, 0.0]])
        assert compute_policy_accuracy(logits, target, torch.ones(2, 2)) == pytest.approx(0.5)


class TestNetworkInference:
    """Tests for NetworkInference."""

    def test_infer(self, tictactoe):
        network = create_network(tictactoe, SMALL)
        inference = NetworkInference(network, tictactoe, use_amp=False)
        state = tictactoe.apply(tictactoe.initial_state(), 4)
        results = inference.infer([tictactoe.initial_state(), state])
        assert len(results) == 2
        policy, value = results[1]
        assert policy.shape == (9,)
        assert policy[4] == pytest.approx(0.0, abs=1e-6)
        assert policy.sum() == pytest.approx(1.0, abs=1e-5)
        assert -1.0 <= value <= 1.0
        assert inference.infer([]) == []

    def test_consistent_across_batches(self, tictactoe):
        network = create_network(tictactoe, SMALL)
        inference = NetworkInference(network, tictactoe, use_amp=False)
        states = [tictactoe.apply(tictactoe.initial_state(), a) for a in range(9)]
        batched = inference.infer(states)
        for state, (policy, value) in zip(states, batched):
            (single_policy, single_value), = inference.infer([state])
            np.testing.assert_allclose(policy, single_policy, atol=1e-5)
            assert value == pytest.approx(single_value, abs=1e-5)

    def test_out_of_memory(self, tictactoe, monkeypatch):
        network = create_network(tictactoe, SMALL)
        inference = NetworkInference(network, tictactoe, use_amp=False)

        def oom(*args, **kwargs):
            raise torch.cuda.OutOfMemoryError("CUDA out of memory")

        monkeypatch.setattr(network, 'predict', oom)
        monkeypatch.setattr(torch.cuda, 'empty_cache', lambda: None)
        with pytest.raises(ResourceExhaustedError):
            inference.infer([tictactoe.initial_state()])
