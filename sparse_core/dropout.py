"""
Dropout Layer - stochastic elementwise gate

During training every unit of every sample is kept with probability 1 - p
and scaled by 1 / (1 - p); the mask drawn for each sample is stored and
replayed by back_propagation. At test time the layer is an identity.
"""
import numpy as np
from .base import Layer, VectorType, NetPhase, to_phase, ensure_slot


class Dropout(Layer):
    """
    Applies dropout to the input.

    Args:
        in_dim: Number of elements of the input
        dropout_rate: Fraction of the input units to be dropped, in [0, 1)
        phase: Initial phase ('train' or 'test')
        seed: Seed for the mask generator (ignored when rng is given)
        rng: numpy.random.Generator used to draw masks
    """

    def __init__(self, in_dim, dropout_rate, phase=NetPhase.TRAIN, seed=None, rng=None):
        super().__init__([VectorType.DATA], [VectorType.DATA])
        self.in_size = in_dim
        self.phase = to_phase(phase)
        self.rng = rng if rng is not None else np.random.default_rng(seed)
        self.set_dropout_rate(dropout_rate)

        # One row per sample; grown on demand, never shrunk
        self.mask = np.zeros((1, in_dim), dtype=np.uint8)

    @property
    def dropout_rate(self):
        return self._dropout_rate

    @dropout_rate.setter
    def dropout_rate(self, rate):
        self.set_dropout_rate(rate)

    def set_dropout_rate(self, rate):
        if not 0.0 <= rate < 1.0:
            raise ValueError(f"Dropout rate must be in [0, 1), got {rate}")
        self._dropout_rate = rate
        self.scale = 1.0 / (1.0 - rate)

    @property
    def mask_rows(self):
        return self.mask.shape[0]

    def fan_in_size(self):
        return 1

    def fan_out_size(self):
        return 1

    def in_shape(self):
        return [(self.in_size,)]

    def out_shape(self):
        return [(self.in_size,)]

    def layer_type(self):
        return 'dropout'

    def set_context(self, phase):
        """Set dropout context (training phase or test phase)."""
        self.phase = to_phase(phase)

    def get_mask(self, sample_index):
        """
        Read-only view of the mask row recorded for one sample.

        1 marks a kept unit, 0 a dropped one.
        """
        row = self.mask[sample_index].view()
        row.flags.writeable = False
        return row

    def clear_mask(self):
        self.mask[:] = 0

    def _grow_mask(self, sample_count):
        if self.mask.shape[0] < sample_count:
            extra = np.zeros((sample_count - self.mask.shape[0], self.in_size), dtype=np.uint8)
            self.mask = np.concatenate([self.mask, extra], axis=0)

    def forward_propagation(self, in_data, out_data):
        x = in_data[0]
        if x.ndim != 2 or x.shape[1] != self.in_size:
            raise ValueError(f"Expected input of shape (N, {self.in_size}), got {x.shape}")
        sample_count = x.shape[0]
        out = ensure_slot(out_data, 0, x.shape, dtype=np.result_type(x, self.scale))

        self._grow_mask(sample_count)

        if self.phase == NetPhase.TRAIN:
            keep = self.rng.random((sample_count, self.in_size)) >= self._dropout_rate
            self.mask[:sample_count] = keep
            out[...] = self.mask[:sample_count] * self.scale * x
        else:
            out[...] = x

    def back_propagation(self, in_data, out_data, out_grad, in_grad):
        dout = out_grad[0]
        sample_count = dout.shape[0]
        if dout.ndim != 2 or dout.shape[1] != self.in_size:
            raise ValueError(f"Expected gradient of shape (N, {self.in_size}), got {dout.shape}")
        if sample_count > self.mask.shape[0]:
            raise ValueError(
                f"Gradient batch ({sample_count}) is larger than the recorded masks ({self.mask.shape[0]})"
            )
        dx = ensure_slot(in_grad, 0, dout.shape, dtype=np.result_type(dout, self.mask))

        # The 1 / (1 - p) scale is only applied in the forward direction
        dx[...] = self.mask[:sample_count] * dout
