"""
Sparse Core - Dropout and Partial-Connected layers on NumPy

Layers follow one contract: forward_propagation / back_propagation over
positional lists of arrays (data at 0, weight at 1, bias at 2), plus the
single-tensor forward(x) / backward(dout) shortcut.

Usage:
    import numpy as np
    from sparse_core import PartialConnectedLayer, Dropout

    layer = PartialConnectedLayer(in_dim=4, out_dim=2, weight_dim=2, bias_dim=2)
    for i in range(4):
        layer.connect_weight(i, i // 2, i % 2)
    layer.connect_bias(0, 0)
    layer.connect_bias(1, 1)
    layer.init_weight()

    drop = Dropout(2, dropout_rate=0.5, seed=0)
    out = drop.forward(layer.forward(np.ones((3, 4))))
"""

from .base import Layer, VectorType, NetPhase
from .connectivity import Connection, ConnectionGraph
from .dropout import Dropout
from .partial_connected import PartialConnectedLayer
from .pooling import AvgPooling


__all__ = [
    # Base
    'Layer', 'VectorType', 'NetPhase',
    # Connectivity
    'Connection', 'ConnectionGraph',
    # Layers
    'Dropout', 'PartialConnectedLayer', 'AvgPooling',
]
