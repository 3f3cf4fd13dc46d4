"""
Smoke checks for sparse_core layers: shapes, numerical gradients and the
empirical dropout rate.

Usage:
    python verify_layers.py --trials 200 --units 1000 --rate 0.5
"""
import argparse
import numpy as np
from tqdm import tqdm

from sparse_core import Dropout, PartialConnectedLayer, AvgPooling

# =============================================================================
# CONFIG
# =============================================================================
SEED = 0
TRIALS = 100
UNITS = 1000
RATE = 0.5
EPS = 1e-6


def numerical_grad(f, arr, eps=EPS):
    """Central difference gradient of scalar f() w.r.t. every entry of arr."""
    grad = np.zeros_like(arr)
    for i in range(arr.size):
        old = arr.flat[i]
        arr.flat[i] = old + eps
        plus = f()
        arr.flat[i] = old - eps
        minus = f()
        arr.flat[i] = old
        grad.flat[i] = (plus - minus) / (2 * eps)
    return grad


def test_partial_connected(rng):
    print("Testing PartialConnectedLayer...")
    # 1D local receptive field of width 3, one shared kernel
    layer = PartialConnectedLayer(in_dim=6, out_dim=4, weight_dim=3, bias_dim=1, scale_factor=0.5)
    for o in range(4):
        for k in range(3):
            layer.connect_weight(o + k, o, k)
        layer.connect_bias(0, o)
    layer.init_weight(rng)
    layer.b = rng.standard_normal(1)

    x = rng.standard_normal((2, 6))
    out = layer.forward(x)
    print(f"Forward shape: {out.shape} (Expected: (2, 4))")
    assert out.shape == (2, 4)

    dout = rng.standard_normal(out.shape)
    dx = layer.backward(dout)
    print(f"Backward shape: {dx.shape} (Expected: (2, 6))")
    assert dx.shape == x.shape

    loss = lambda: np.sum(layer.forward(x) * dout)
    assert np.allclose(dx, numerical_grad(loss, x), atol=1e-5)
    assert np.allclose(layer.dW, numerical_grad(loss, layer.W), atol=1e-5)
    assert np.allclose(layer.db, numerical_grad(loss, layer.b), atol=1e-5)
    print(f"fan_in={layer.fan_in_size()} fan_out={layer.fan_out_size()} params={layer.param_size()}")
    print("PartialConnectedLayer Passed!\n")


def test_avg_pooling(rng):
    print("Testing AvgPooling...")
    C, H, W = 2, 4, 4
    layer = AvgPooling(W, H, C, pool_size=2)
    layer.W = np.ones(C)
    layer.b = np.zeros(C)

    x = rng.standard_normal((3, C * H * W))
    out = layer.forward(x)
    expected = x.reshape(3, C, 2, 2, 2, 2).mean(axis=(3, 5)).reshape(3, -1)
    print(f"Forward shape: {out.shape} (Expected: (3, 8))")
    assert np.allclose(out, expected)

    dx = layer.backward(np.ones_like(out))
    assert np.allclose(dx, 0.25)
    print("AvgPooling Passed!\n")


def test_dropout(rng, trials, units, rate):
    print("Testing Dropout...")
    layer = Dropout(units, rate, rng=rng)
    x = np.ones((1, units))

    dropped = 0
    for _ in tqdm(range(trials), desc="dropout trials"):
        out = layer.forward(x)
        dropped += np.count_nonzero(out == 0)
        dx = layer.backward(np.ones_like(out))
        assert np.array_equal(dx == 0, out == 0)

    observed = dropped / (trials * units)
    print(f"Observed drop rate: {observed:.4f} (Expected: {rate})")
    assert abs(observed - rate) < 0.02

    layer.set_context('test')
    assert np.array_equal(layer.forward(x), x)
    print("Dropout Passed!\n")


def main():
    parser = argparse.ArgumentParser(description='Verify sparse_core layers')
    parser.add_argument('--seed', type=int, default=SEED)
    parser.add_argument('--trials', type=int, default=TRIALS)
    parser.add_argument('--units', type=int, default=UNITS)
    parser.add_argument('--rate', type=float, default=RATE)
    args = parser.parse_args()

    rng = np.random.default_rng(args.seed)
    test_partial_connected(rng)
    test_avg_pooling(rng)
    test_dropout(rng, args.trials, args.units, args.rate)


if __name__ == "__main__":
    main()
