"""
Partial-Connected Layer - sparse affine transform with shared weights

Each output is the scaled sum of weight * input over the (weight, input)
pairs registered for it, plus the bias registered for it:

    y[o] = scale_factor * sum(W[w] * x[i] for (w, i) in out2wi[o]) + b[out2bias[o]]

The same weight index may be registered for many (input, output) pairs,
which is how convolution and pooling style layers are expressed.
"""
import numpy as np
from .base import Layer, VectorType, ensure_slot
from .connectivity import ConnectionGraph


class PartialConnectedLayer(Layer):
    """
    Sparsely connected layer defined by explicit connect calls.

    Args:
        in_dim: Number of input units
        out_dim: Number of output units
        weight_dim: Number of distinct weights
        bias_dim: Number of distinct biases
        scale_factor: Multiplier applied to every weighted sum and weight gradient
    """

    def __init__(self, in_dim, out_dim, weight_dim, bias_dim, scale_factor=1.0):
        super().__init__([VectorType.DATA, VectorType.WEIGHT, VectorType.BIAS], [VectorType.DATA])
        self.in_dim = in_dim
        self.out_dim = out_dim
        self.weight_dim = weight_dim
        self.bias_dim = bias_dim
        self.scale_factor = scale_factor
        self.graph = ConnectionGraph(in_dim, out_dim, weight_dim, bias_dim)

    def connect_weight(self, input_index, output_index, weight_index):
        self.graph.connect_weight(input_index, output_index, weight_index)

    def connect_bias(self, bias_index, output_index):
        self.graph.connect_bias(bias_index, output_index)

    def param_size(self):
        return self.graph.param_size()

    def fan_in_size(self):
        return self.graph.fan_in_size()

    def fan_out_size(self):
        return self.graph.fan_out_size()

    def in_shape(self):
        return [(self.in_dim,), (self.weight_dim,), (self.bias_dim,)]

    def out_shape(self):
        return [(self.out_dim,)]

    def layer_type(self):
        return 'partial-connected'

    def init_weight(self, rng=None):
        """He initialization scaled by the fan-in of this topology."""
        rng = rng if rng is not None else np.random.default_rng()
        scale = np.sqrt(2.0 / max(1, self.fan_in_size()))
        self.W = rng.standard_normal(self.weight_dim) * scale
        self.b = np.zeros(self.bias_dim)

    def _check_params(self, W, b):
        if W is None or b is None:
            raise ValueError("Weights are not set; call init_weight() or pass them in in_data")
        if W.shape != (self.weight_dim,):
            raise ValueError(f"Expected weights of shape ({self.weight_dim},), got {W.shape}")
        if b.shape != (self.bias_dim,):
            raise ValueError(f"Expected biases of shape ({self.bias_dim},), got {b.shape}")

    def _check_batch(self, name, t, size, sample_count=None):
        if t.ndim != 2 or t.shape[1] != size:
            raise ValueError(f"Expected {name} of shape (N, {size}), got {t.shape}")
        if sample_count is not None and t.shape[0] != sample_count:
            raise ValueError(f"{name} batch size {t.shape[0]} does not match data batch size {sample_count}")

    def forward_propagation(self, in_data, out_data):
        x, W, b = in_data[0], in_data[1], in_data[2]
        self._check_batch('input', x, self.in_dim)
        self._check_params(W, b)

        idx = self.graph.arrays()
        sample_count = x.shape[0]
        out = ensure_slot(out_data, 0, (sample_count, self.out_dim), dtype=np.result_type(x, W, b))

        # add.at accumulates repeated output indices in registration order
        out[...] = 0
        np.add.at(out, (slice(None), idx['output']), W[idx['weight']] * x[:, idx['input']])
        out *= self.scale_factor

        out2bias = idx['out2bias']
        has_bias = out2bias >= 0
        out[:, has_bias] += b[out2bias[has_bias]]

    def back_propagation(self, in_data, out_data, out_grad, in_grad):
        x, W, b = in_data[0], in_data[1], in_data[2]
        dout = out_grad[0]
        dW, db = in_grad[1], in_grad[2]

        self._check_batch('input', x, self.in_dim)
        self._check_params(W, b)
        sample_count = x.shape[0]
        self._check_batch('output gradient', dout, self.out_dim, sample_count)
        if dW is None or dW.shape != (self.weight_dim,):
            raise ValueError(f"Expected weight gradient buffer of shape ({self.weight_dim},)")
        if db is None or db.shape != (self.bias_dim,):
            raise ValueError(f"Expected bias gradient buffer of shape ({self.bias_dim},)")

        idx = self.graph.arrays()
        dtype = np.result_type(x, W, dout)

        # Gradient w.r.t. the input
        dx = ensure_slot(in_grad, 0, (sample_count, self.in_dim), dtype=dtype)
        dx[...] = 0
        np.add.at(dx, (slice(None), idx['input']), W[idx['weight']] * dout[:, idx['output']])
        dx *= self.scale_factor

        # Per-sample weight / bias sums
        w_diff = np.zeros((sample_count, self.weight_dim), dtype=dtype)
        np.add.at(w_diff, (slice(None), idx['weight']), x[:, idx['input']] * dout[:, idx['output']])

        b_diff = np.zeros((sample_count, self.bias_dim), dtype=dout.dtype)
        np.add.at(b_diff, (slice(None), idx['bias_src']), dout[:, idx['bias_dst']])

        # Several samples hit the same slot, so accumulate one sample at a time
        for sample in range(sample_count):
            dW += w_diff[sample] * self.scale_factor
            db += b_diff[sample]
