# SPDX-License-Identifier: CC-BY-NC-4.0
# Copyright (c) 2025-2026 fumi-engineer

"""Minibatch training loop.

Per iteration:
  1. prepare_layer(True)                     (e.g. resample dropout masks)
  2. g = sum of solver gradients over up to batch_size examples
  3. update = -lr / batch_size * g - lr * regularize_layer()
  4. update += momentum * previous_update    (when momentum != 0)
  5. apply_gradient(update)

Every ``log_iterations`` iterations the validation set is scored in
inference mode and (train_loss, val_loss) is logged and recorded.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Iterator, Sequence, TypeVar

import numpy as np

from .layers import Layer
from .solvers import GradientSolver

logger = logging.getLogger(__name__)

T = TypeVar("T")


def cycle_shuffling(examples: Sequence[T], rng: np.random.Generator | None = None) -> Iterator[T]:
    """Endless stream over ``examples``, reshuffled on every pass."""
    if not examples:
        return
    rng = rng if rng is not None else np.random.default_rng()
    while True:
        for index in rng.permutation(len(examples)):
            yield examples[index]


@dataclass
class TrainConfig:
    """Training configuration."""

    learning_rate: float = 0.1
    iterations: int = 100
    batch_size: int = 100
    learning_momentum: float = 0.0
    log_iterations: int = 10

    @classmethod
    def default(cls) -> TrainConfig:
        """Return default training config."""
        return cls()

    @classmethod
    def new(cls, learning_rate: float, iterations: int) -> TrainConfig:
        """One example per iteration, no momentum, no logging."""
        return cls(
            learning_rate=learning_rate,
            iterations=iterations,
            batch_size=1,
            learning_momentum=0.0,
            log_iterations=0,
        )

    def __post_init__(self):
        if self.batch_size < 1:
            raise ValueError(f"batch_size must be positive, got {self.batch_size}")


class BatchedTrainer:
    """Minibatch gradient descent with momentum and regularization."""

    def __init__(self, config: TrainConfig):
        self.config = config

    def train(
        self,
        solver: GradientSolver,
        network: Layer,
        inputs: Iterable[tuple],
        test_inputs: Sequence[tuple] = (),
    ) -> list[tuple[float, float]]:
        """Train ``network`` in place on (input, target) pairs.

        ``inputs`` is consumed lazily; training stops gathering a batch as
        soon as it runs dry.

        Returns:
            (train_loss, val_loss) for every logged iteration.
        """
        config = self.config
        examples = iter(inputs)
        losses: list[tuple[float, float]] = []

        factor = -config.learning_rate / config.batch_size
        reg_factor = -config.learning_rate
        previous_update = network.default_gradient()

        train_loss = 0.0
        seen = 0
        for iteration in range(config.iterations):
            network.prepare_layer(True)
            update = network.default_gradient()
            for _ in range(config.batch_size):
                example = next(examples, None)
                if example is None:
                    break
                x, target = example
                update.add_assign(solver.get_gradient(network, x, target))
                train_loss += solver.score(network, x, target)
                seen += 1

            update.scale(factor)
            update.add_assign(network.regularize_layer().scale(reg_factor))
            if config.learning_momentum != 0.0:
                update.add_assign(previous_update.scale(config.learning_momentum))
            network.apply_gradient(update)
            previous_update = update

            if config.log_iterations > 0 and (iteration + 1) % config.log_iterations == 0:
                network.prepare_layer(False)
                val_loss = 0.0
                for x, target in test_inputs:
                    val_loss += solver.score(network, x, target)
                if test_inputs:
                    val_loss /= len(test_inputs)
                if seen:
                    train_loss /= seen
                logger.info(
                    "Iteration %d, Training loss: %.3f, Validation loss: %.3f",
                    iteration + 1, train_loss, val_loss,
                )
                losses.append((train_loss, val_loss))
                train_loss = 0.0
                seen = 0

        network.prepare_layer(False)
        return losses
