"""
Connectivity tables for sparsely connected layers.

A ConnectionGraph is an explicit enumeration of which weight feeds which
output from which input, plus which bias is added to which output. The
weight side is kept in three redundant tables, all updated by the same
connect_weight call:

    weight2io[w] -> [(in, out), ...]
    out2wi[o]    -> [(w, in), ...]
    in2wo[i]     -> [(w, out), ...]

Lists keep registration order, which fixes the floating-point accumulation
order of forward and backward passes.
"""
from collections import namedtuple

import numpy as np


Connection = namedtuple('Connection', ['input', 'output', 'weight'])


def _check_index(name, index, size):
    if not 0 <= index < size:
        raise IndexError(f"{name} index {index} out of range [0, {size})")


class ConnectionGraph:
    """Index tables between inputs, outputs, weights and biases."""

    def __init__(self, in_dim, out_dim, weight_dim, bias_dim):
        self.in_dim = in_dim
        self.out_dim = out_dim
        self.weight_dim = weight_dim
        self.bias_dim = bias_dim

        self.weight2io = [[] for _ in range(weight_dim)]
        self.out2wi = [[] for _ in range(out_dim)]
        self.in2wo = [[] for _ in range(in_dim)]
        self.bias2out = [[] for _ in range(bias_dim)]
        self.out2bias = [None] * out_dim

        self.connections = []
        self._bias_links = []
        self._arrays = None

    def connect_weight(self, input_index, output_index, weight_index):
        _check_index('input', input_index, self.in_dim)
        _check_index('output', output_index, self.out_dim)
        _check_index('weight', weight_index, self.weight_dim)

        conn = Connection(input_index, output_index, weight_index)
        self.weight2io[weight_index].append((input_index, output_index))
        self.out2wi[output_index].append((weight_index, input_index))
        self.in2wo[input_index].append((weight_index, output_index))
        self.connections.append(conn)
        self._arrays = None
        return conn

    def connect_bias(self, bias_index, output_index):
        _check_index('bias', bias_index, self.bias_dim)
        _check_index('output', output_index, self.out_dim)

        self.out2bias[output_index] = bias_index
        self.bias2out[bias_index].append(output_index)
        self._bias_links.append((bias_index, output_index))
        self._arrays = None

    def fan_in_size(self):
        return max((len(c) for c in self.out2wi), default=0)

    def fan_out_size(self):
        return max((len(c) for c in self.in2wo), default=0)

    def param_size(self):
        """Number of weights and biases with at least one connection."""
        used_w = sum(1 for io in self.weight2io if io)
        used_b = sum(1 for outs in self.bias2out if outs)
        return used_w + used_b

    def arrays(self):
        """
        Flat index arrays in registration order, rebuilt after each connect.

        Returns:
            dict with 'input', 'output', 'weight' (one entry per weight
            connection), 'bias_src', 'bias_dst' (one entry per bias
            connection) and 'out2bias' (-1 where no bias is registered).
        """
        if self._arrays is None:
            conns = np.array(self.connections, dtype=np.intp).reshape(-1, 3)
            links = np.array(self._bias_links, dtype=np.intp).reshape(-1, 2)
            out2bias = np.array([-1 if b is None else b for b in self.out2bias], dtype=np.intp)
            self._arrays = {
                'input': conns[:, 0],
                'output': conns[:, 1],
                'weight': conns[:, 2],
                'bias_src': links[:, 0],
                'bias_dst': links[:, 1],
                'out2bias': out2bias,
            }
        return self._arrays
