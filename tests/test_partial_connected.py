import numpy as np
import pytest

from sparse_core import PartialConnectedLayer, VectorType


def one_to_one(n, scale_factor=1.0):
    layer = PartialConnectedLayer(n, n, n, n, scale_factor)
    for i in range(n):
        layer.connect_weight(i, i, i)
        layer.connect_bias(i, i)
    return layer


def receptive_field(in_dim=7, width=3, scale_factor=1.0):
    """1D local receptive field with one shared kernel and one shared bias."""
    out_dim = in_dim - width + 1
    layer = PartialConnectedLayer(in_dim, out_dim, width, 1, scale_factor)
    for o in range(out_dim):
        for k in range(width):
            layer.connect_weight(o + k, o, k)
        layer.connect_bias(0, o)
    return layer


def run_backward(layer, x, W, b, dout, dW, db):
    in_grad = [None, dW, db]
    layer.back_propagation([x, W, b], [None], [dout], in_grad)
    return in_grad[0]


def test_contract():
    layer = PartialConnectedLayer(6, 4, 3, 2)
    assert layer.in_types == [VectorType.DATA, VectorType.WEIGHT, VectorType.BIAS]
    assert layer.in_shape() == [(6,), (3,), (2,)]
    assert layer.out_shape() == [(4,)]
    assert layer.layer_type() == 'partial-connected'
    assert layer.scale_factor == 1.0


def test_one_to_one_matches_dense_affine():
    rng = np.random.default_rng(0)
    layer = one_to_one(5)
    x = rng.standard_normal((3, 5))
    W = rng.standard_normal(5)
    b = rng.standard_normal(5)

    out_data = [None]
    layer.forward_propagation([x, W, b], out_data)
    np.testing.assert_array_equal(out_data[0], W * x + b)


def test_forward_matches_explicit_sum():
    rng = np.random.default_rng(1)
    layer = receptive_field(scale_factor=0.25)
    x = rng.standard_normal((2, 7))
    W = rng.standard_normal(3)
    b = rng.standard_normal(1)

    out_data = [None]
    layer.forward_propagation([x, W, b], out_data)

    expected = np.zeros((2, 5))
    for s in range(2):
        for o in range(5):
            acc = 0.0
            for k in range(3):
                acc += W[k] * x[s, o + k]
            expected[s, o] = acc * 0.25 + b[0]
    np.testing.assert_array_equal(out_data[0], expected)


def test_forward_sums_in_registration_order():
    # 1e16 + 1.0 rounds back to 1e16, so only left-to-right order gives 0.0
    layer = PartialConnectedLayer(3, 1, 3, 1)
    for i in range(3):
        layer.connect_weight(i, 0, i)
    layer.connect_bias(0, 0)
    x = np.array([[1e16, 1.0, -1e16]])
    out_data = [None]
    layer.forward_propagation([x, np.ones(3), np.zeros(1)], out_data)
    assert out_data[0][0, 0] == 0.0

    reordered = PartialConnectedLayer(3, 1, 3, 1)
    for i in (0, 2, 1):
        reordered.connect_weight(i, 0, i)
    reordered.connect_bias(0, 0)
    reordered.forward_propagation([x, np.ones(3), np.zeros(1)], out_data)
    assert out_data[0][0, 0] == 1.0


def test_shared_weight_gradient_sums_contributions():
    # inputs 0 -> output 0 and 1 -> output 1 both use weight 0
    layer = PartialConnectedLayer(2, 2, 1, 2, scale_factor=0.5)
    layer.connect_weight(0, 0, 0)
    layer.connect_weight(1, 1, 0)
    layer.connect_bias(0, 0)
    layer.connect_bias(1, 1)

    x = np.array([[2.0, 3.0]])
    dout = np.array([[5.0, 7.0]])
    W = np.array([1.5])
    b = np.zeros(2)
    dW = np.zeros(1)
    db = np.zeros(2)
    dx = run_backward(layer, x, W, b, dout, dW, db)

    assert dW[0] == pytest.approx(0.5 * (2.0 * 5.0 + 3.0 * 7.0))
    np.testing.assert_allclose(dx, [[0.5 * 1.5 * 5.0, 0.5 * 1.5 * 7.0]])
    np.testing.assert_allclose(db, [5.0, 7.0])


@pytest.mark.parametrize('scale_factor', [1.0, 0.25, 3.0])
def test_bias_gradient_ignores_scale(scale_factor):
    rng = np.random.default_rng(2)
    layer = receptive_field(scale_factor=scale_factor)
    x = rng.standard_normal((4, 7))
    dout = rng.standard_normal((4, 5))
    dW = np.zeros(3)
    db = np.zeros(1)
    run_backward(layer, x, rng.standard_normal(3), np.zeros(1), dout, dW, db)
    assert db[0] == pytest.approx(dout.sum())


def test_gradients_accumulate_into_caller_buffer():
    rng = np.random.default_rng(3)
    layer = receptive_field(scale_factor=0.5)
    x = rng.standard_normal((3, 7))
    W = rng.standard_normal(3)
    b = rng.standard_normal(1)
    dout = rng.standard_normal((3, 5))

    dW_once = np.zeros(3)
    db_once = np.zeros(1)
    run_backward(layer, x, W, b, dout, dW_once, db_once)

    baseline_w = np.array([1.0, -2.0, 0.5])
    baseline_b = np.array([4.0])
    dW = baseline_w.copy()
    db = baseline_b.copy()
    run_backward(layer, x, W, b, dout, dW, db)
    run_backward(layer, x, W, b, dout, dW, db)

    np.testing.assert_allclose(dW, baseline_w + 2 * dW_once)
    np.testing.assert_allclose(db, baseline_b + 2 * db_once)


def test_input_gradient_is_overwritten():
    rng = np.random.default_rng(4)
    layer = receptive_field()
    x = rng.standard_normal((2, 7))
    W = rng.standard_normal(3)
    dout = rng.standard_normal((2, 5))

    dx_buf = np.full((2, 7), 100.0)
    in_grad = [dx_buf, np.zeros(3), np.zeros(1)]
    layer.back_propagation([x, W, np.zeros(1)], [None], [dout], in_grad)
    assert in_grad[0] is dx_buf

    fresh = run_backward(layer, x, W, np.zeros(1), dout, np.zeros(3), np.zeros(1))
    np.testing.assert_allclose(dx_buf, fresh)


def test_gradients_match_numerical():
    rng = np.random.default_rng(5)
    layer = receptive_field(scale_factor=0.5)
    layer.init_weight(rng)
    layer.b = rng.standard_normal(1)
    x = rng.standard_normal((2, 7))
    dout = rng.standard_normal((2, 5))

    layer.forward(x)
    dx = layer.backward(dout)

    eps = 1e-6
    num_dW = np.zeros(3)
    for k in range(3):
        layer.W[k] += eps
        plus = np.sum(layer.forward(x) * dout)
        layer.W[k] -= 2 * eps
        minus = np.sum(layer.forward(x) * dout)
        layer.W[k] += eps
        num_dW[k] = (plus - minus) / (2 * eps)
    np.testing.assert_allclose(layer.dW, num_dW, atol=1e-6)

    # linear in x: dx = scale * W^T dout
    dense = np.zeros((5, 7))
    for o in range(5):
        dense[o, o:o + 3] = layer.W
    np.testing.assert_allclose(dx, 0.5 * dout @ dense)


def test_fan_in_fan_out():
    layer = receptive_field(in_dim=7, width=3)
    assert layer.fan_in_size() == 3
    assert layer.fan_out_size() == 3

    layer = PartialConnectedLayer(3, 2, 2, 1)
    layer.connect_weight(0, 0, 0)
    layer.connect_weight(0, 1, 1)
    layer.connect_weight(1, 1, 0)
    layer.connect_weight(2, 1, 1)
    assert layer.fan_in_size() == 3
    assert layer.fan_out_size() == 2


def test_param_size_counts_used_indices():
    layer = PartialConnectedLayer(4, 2, 5, 3)
    layer.connect_weight(0, 0, 1)
    layer.connect_weight(1, 1, 1)
    layer.connect_weight(2, 1, 4)
    layer.connect_bias(2, 0)
    assert layer.param_size() == 3


def test_unwired_output_has_no_terms():
    layer = PartialConnectedLayer(2, 3, 1, 1)
    layer.connect_weight(0, 0, 0)
    layer.connect_bias(0, 0)
    out_data = [None]
    layer.forward_propagation([np.ones((1, 2)), np.array([2.0]), np.array([1.0])], out_data)
    np.testing.assert_array_equal(out_data[0], [[3.0, 0.0, 0.0]])


def test_last_bias_wins_for_output():
    layer = PartialConnectedLayer(1, 1, 1, 2)
    layer.connect_weight(0, 0, 0)
    layer.connect_bias(0, 0)
    layer.connect_bias(1, 0)
    out_data = [None]
    layer.forward_propagation([np.zeros((1, 1)), np.ones(1), np.array([10.0, 20.0])], out_data)
    assert out_data[0][0, 0] == 20.0
    assert layer.graph.bias2out == [[0], [0]]


def test_forward_requires_weights():
    layer = one_to_one(2)
    with pytest.raises(ValueError):
        layer.forward(np.ones((1, 2)))


@pytest.mark.parametrize('shape', [(2, 3), (2,)])
def test_forward_rejects_bad_input_shape(shape):
    layer = one_to_one(2)
    with pytest.raises(ValueError):
        layer.forward_propagation([np.ones(shape), np.ones(2), np.ones(2)], [None])


def test_backward_rejects_mismatched_batch():
    layer = one_to_one(2)
    with pytest.raises(ValueError):
        run_backward(layer, np.ones((3, 2)), np.ones(2), np.ones(2), np.ones((2, 2)), np.zeros(2), np.zeros(2))


def test_backward_rejects_missing_buffers():
    layer = one_to_one(2)
    with pytest.raises(ValueError):
        run_backward(layer, np.ones((1, 2)), np.ones(2), np.ones(2), np.ones((1, 2)), None, np.zeros(2))
