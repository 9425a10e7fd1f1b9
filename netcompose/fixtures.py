# SPDX-License-Identifier: CC-BY-NC-4.0
# Copyright (c) 2025-2026 fumi-engineer

"""Training trajectories persisted as JSON.

A trajectory is the list of parameter snapshots of a chain of dense
layers: the initial parameters, then one snapshot per training step.
Each snapshot is [W1, b1, W2, b2, ...] stored as nested float lists:

  [
    [[[0.1, -0.3], ...], [0.1, ...], [[...]], [...]],   # before training
    ...                                                  # after step k
  ]

Replaying the same steps from the first snapshot must reproduce every
later one.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Sequence

import numpy as np

from .derivable import Activation, L0
from .layers import DenseLayer
from .network import NetworkNode
from .sequential import Sequential, sequential
from .solvers import GradientSolver
from .train import BatchedTrainer, TrainConfig

Snapshot = list[np.ndarray]


def snapshot(network: NetworkNode) -> Snapshot:
    """Copy (weights, bias) of every dense layer, in order."""
    params: Snapshot = []
    for layer in network.layers():
        if isinstance(layer, DenseLayer):
            params.append(layer.weights.copy())
            params.append(layer.bias.copy())
    return params


def network_from_snapshot(params: Snapshot, activations: Sequence[Activation]) -> Sequential:
    """Rebuild a dense chain from a snapshot, one activation per layer."""
    if len(params) != 2 * len(activations):
        raise ValueError(
            f"snapshot holds {len(params) // 2} layers but {len(activations)} activations were given"
        )
    layers = [
        DenseLayer(params[2 * i], params[2 * i + 1], act, L0())
        for i, act in enumerate(activations)
    ]
    return sequential(*layers)


def record_trajectory(
    network: NetworkNode,
    solver: GradientSolver,
    examples: Sequence[tuple],
    learning_rate: float,
) -> list[Snapshot]:
    """Train on ``examples`` one at a time, snapshotting after each step."""
    trainer = BatchedTrainer(TrainConfig.new(learning_rate, 1))
    steps = [snapshot(network)]
    for example in examples:
        trainer.train(solver, network, [example], examples)
        steps.append(snapshot(network))
    return steps


def save_trajectory(path: str | Path, steps: list[Snapshot]) -> None:
    data = [[array.tolist() for array in step] for step in steps]
    Path(path).write_text(json.dumps(data))


def load_trajectory(path: str | Path) -> list[Snapshot]:
    data = json.loads(Path(path).read_text())
    return [[np.array(array, dtype=np.float64) for array in step] for step in data]


def assert_trajectory(
    expected: list[Snapshot], actual: list[Snapshot], rtol: float = 1e-12, atol: float = 0.0
) -> None:
    """Assert two trajectories match step by step and parameter by parameter."""
    assert len(expected) == len(actual), f"{len(expected)} steps expected, got {len(actual)}"
    for step, (want, got) in enumerate(zip(expected, actual)):
        assert len(want) == len(got), f"step {step}: {len(want)} parameters expected, got {len(got)}"
        for want_param, got_param in zip(want, got):
            np.testing.assert_allclose(
                got_param, want_param, rtol=rtol, atol=atol, err_msg=f"step {step}"
            )
