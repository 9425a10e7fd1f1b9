# SPDX-License-Identifier: CC-BY-NC-4.0
# Copyright (c) 2025-2026 fumi-engineer

"""Composable neural networks with hand-written gradients.

Pure Python + NumPy. Layers are declared without knowing their input
shape, composed into networks, constructed against an input shape (which
type-checks every connection before any data flows) and trained with a
pluggable gradient solver.

Key components:
  - Shape: Vector / Matrix / Tensor (shape.py)
  - Gradient algebra: Empty, Params, Pair, Stack, DynGradient (algebra.py)
  - Activations, regularizers, losses (derivable.py)
  - Layer contract + Dense, Dropout, Softmax, Normalize, Isolate, Lock (layers.py)
  - Axis combiners for multi-input nodes (axis.py)
  - Composers: Sequential, Residual, Graph (sequential.py, residual.py, graph.py)
  - Solvers: Backprop, ForwardForward (solvers.py)
  - Train: BatchedTrainer, TrainConfig (train.py)
  - JSON training trajectories (fixtures.py)
"""

from .shape import Shape, Vector, Matrix, Tensor, shape_of
from .errors import (
    ConstructionError,
    InvariantError,
    IncompatibleShape,
    OutOfBound,
    OutOfOrder,
    AxisError,
    NoInput,
    ConflictingShape,
    InvalidAmount,
    RecursiveError,
    ResidualConstructError,
    ResidualLayerError,
    ResidualAxisError,
    NoOutput,
    WrongConnection,
    OutOfBoundConnection,
    ResidualNoInput,
    GraphError,
    MissingNode,
    InvalidName,
    LayerErr,
    Cyclic,
)
from .algebra import VectorSpace, Empty, EMPTY, Params, Pair, Stack, DynGradient
from .derivable import (
    Activation,
    Relu,
    LeakyRelu,
    Tanh,
    Sigmoid,
    Linear,
    Regularizer,
    L0,
    L1,
    L2,
    ElasticNet,
    Loss,
    Euclidean,
    CrossEntropy,
)
from .layers import (
    Layer,
    PartialLayer,
    construct_layer,
    DenseLayer,
    DensePartial,
    DropoutLayer,
    DropoutPartial,
    SoftmaxLayer,
    SoftmaxPartial,
    NormalizeLayer,
    NormalizePartial,
    IsolateLayer,
    IsolatePartial,
    ReshapeLayer,
    ReshapePartial,
    OneHotLayer,
    OneHotPartial,
    LockLayer,
    dense,
    dropout,
    softmax,
    normalize,
    isolate,
    reshape,
    one_hot,
)
from .axis import Axis, AxisDefault, AxisAppend
from .network import NetworkNode
from .sequential import Sequential, SequentialLast, sequential
from .residual import (
    ResidualInput,
    Residual,
    ResidualNode,
    ResidualLast,
    ResidualBuilder,
    residual,
)
from .graph import GraphNode, GraphLayerNode, GraphPartial, Graph
from .solvers import GradientSolver, Backprop, ForwardForward, goodness
from .train import TrainConfig, BatchedTrainer, cycle_shuffling
from .fixtures import (
    snapshot,
    network_from_snapshot,
    record_trajectory,
    save_trajectory,
    load_trajectory,
    assert_trajectory,
)

__all__ = [
    "Shape",
    "Vector",
    "Matrix",
    "Tensor",
    "shape_of",
    "ConstructionError",
    "InvariantError",
    "IncompatibleShape",
    "OutOfBound",
    "OutOfOrder",
    "AxisError",
    "NoInput",
    "ConflictingShape",
    "InvalidAmount",
    "RecursiveError",
    "ResidualConstructError",
    "ResidualLayerError",
    "ResidualAxisError",
    "NoOutput",
    "WrongConnection",
    "OutOfBoundConnection",
    "ResidualNoInput",
    "GraphError",
    "MissingNode",
    "InvalidName",
    "LayerErr",
    "Cyclic",
    "VectorSpace",
    "Empty",
    "EMPTY",
    "Params",
    "Pair",
    "Stack",
    "DynGradient",
    "Activation",
    "Relu",
    "LeakyRelu",
    "Tanh",
    "Sigmoid",
    "Linear",
    "Regularizer",
    "L0",
    "L1",
    "L2",
    "ElasticNet",
    "Loss",
    "Euclidean",
    "CrossEntropy",
    "Layer",
    "PartialLayer",
    "construct_layer",
    "DenseLayer",
    "DensePartial",
    "DropoutLayer",
    "DropoutPartial",
    "SoftmaxLayer",
    "SoftmaxPartial",
    "NormalizeLayer",
    "NormalizePartial",
    "IsolateLayer",
    "IsolatePartial",
    "ReshapeLayer",
    "ReshapePartial",
    "OneHotLayer",
    "OneHotPartial",
    "LockLayer",
    "dense",
    "dropout",
    "softmax",
    "normalize",
    "isolate",
    "reshape",
    "one_hot",
    "Axis",
    "AxisDefault",
    "AxisAppend",
    "NetworkNode",
    "Sequential",
    "SequentialLast",
    "sequential",
    "ResidualInput",
    "Residual",
    "ResidualNode",
    "ResidualLast",
    "ResidualBuilder",
    "residual",
    "GraphNode",
    "GraphLayerNode",
    "GraphPartial",
    "Graph",
    "GradientSolver",
    "Backprop",
    "ForwardForward",
    "goodness",
    "TrainConfig",
    "BatchedTrainer",
    "cycle_shuffling",
    "snapshot",
    "network_from_snapshot",
    "record_trajectory",
    "save_trajectory",
    "load_trajectory",
    "assert_trajectory",
]
