"""
Layer contract shared by every layer in sparse_core.

A layer declares the kind of each input/output port, its shapes and its
fan-in/fan-out, and implements two propagation entry points that work on
lists of NumPy arrays indexed positionally:

    in_data  = [x, W, b]        # data, weight, bias (as declared by in_types)
    out_data = [y]
    out_grad = [dy]
    in_grad  = [dx, dW, db]     # dW / db are accumulated in place
"""
from enum import Enum

import numpy as np


class VectorType(Enum):
    DATA = 'data'
    WEIGHT = 'weight'
    BIAS = 'bias'


class NetPhase(Enum):
    TRAIN = 'train'
    TEST = 'test'


def to_phase(phase):
    """Accept a NetPhase or its string value ('train' / 'test')."""
    if isinstance(phase, NetPhase):
        return phase
    if isinstance(phase, str):
        return NetPhase(phase.lower())
    raise TypeError(f"Unknown phase: {phase!r}")


def ensure_slot(tensors, index, shape, dtype=np.float64):
    """
    Make tensors[index] an array of the given shape.

    A correctly shaped slot is reused (written in place by the caller),
    anything else is replaced by a fresh zero array.
    """
    current = tensors[index]
    if current is None or current.shape != tuple(shape):
        tensors[index] = np.zeros(shape, dtype=dtype)
    return tensors[index]


class Layer:
    """Base class for all layers."""
    def __init__(self, in_types, out_types):
        self.in_types = list(in_types)
        self.out_types = list(out_types)
        self.x = None
        self.W = None
        self.b = None
        self.dW = None
        self.db = None

    def in_data_size(self):
        return len(self.in_types)

    def out_data_size(self):
        return len(self.out_types)

    def in_shape(self):
        raise NotImplementedError

    def out_shape(self):
        raise NotImplementedError

    def fan_in_size(self):
        """Number of incoming connections for each output unit."""
        raise NotImplementedError

    def fan_out_size(self):
        """Number of outgoing connections for each input unit."""
        raise NotImplementedError

    def layer_type(self):
        raise NotImplementedError

    def set_context(self, phase):
        """Switch between training and test behaviour. No-op by default."""
        pass

    def forward_propagation(self, in_data, out_data):
        raise NotImplementedError

    def back_propagation(self, in_data, out_data, out_grad, in_grad):
        raise NotImplementedError

    def _params(self):
        params = []
        for kind in self.in_types[1:]:
            if kind == VectorType.WEIGHT:
                params.append(self.W)
            elif kind == VectorType.BIAS:
                params.append(self.b)
        return params

    def forward(self, x):
        """
        Forward pass using the layer's own parameters.

        Args:
            x: Input batch (N, in_features)

        Returns:
            Output batch (N, out_features)
        """
        self.x = x
        out_data = [None]
        self.forward_propagation([x] + self._params(), out_data)
        return out_data[0]

    def backward(self, dout):
        """
        Backward pass for the sample batch seen by the last forward().

        Fresh zero dW / db accumulators are allocated on every call.

        Args:
            dout: Gradient from the next layer (N, out_features)

        Returns:
            Gradient w.r.t. the input (N, in_features)
        """
        in_grad = [None]
        for kind in self.in_types[1:]:
            if kind == VectorType.WEIGHT:
                self.dW = np.zeros_like(self.W)
                in_grad.append(self.dW)
            elif kind == VectorType.BIAS:
                self.db = np.zeros_like(self.b)
                in_grad.append(self.db)
        self.back_propagation([self.x] + self._params(), [None], [dout], in_grad)
        return in_grad[0]
