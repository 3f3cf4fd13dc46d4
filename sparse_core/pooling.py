"""
Average Pooling built on the partial-connected layer.

Every channel has one shared weight and one bias; each output cell is wired
to the pool_size x pool_size window of its channel and the weighted sum is
divided by the window area through scale_factor.
"""
from .partial_connected import PartialConnectedLayer


class AvgPooling(PartialConnectedLayer):
    """
    Trainable average pooling layer.

    Args:
        in_width: Input width
        in_height: Input height
        in_channels: Number of channels
        pool_size: Window size (square)
        stride: Stride (defaults to pool_size)

    Features are flattened channel-major: index = (c * H + y) * W + x.
    """

    def __init__(self, in_width, in_height, in_channels, pool_size, stride=None):
        stride = stride if stride is not None else pool_size
        if pool_size < 1 or stride < 1:
            raise ValueError(f"pool_size and stride must be positive, got {pool_size}, {stride}")
        if pool_size > in_width or pool_size > in_height:
            raise ValueError(f"Pool size {pool_size} is larger than input {in_width}x{in_height}")

        out_w = (in_width - pool_size) // stride + 1
        out_h = (in_height - pool_size) // stride + 1

        super().__init__(
            in_width * in_height * in_channels,
            out_w * out_h * in_channels,
            in_channels,
            in_channels,
            scale_factor=1.0 / (pool_size * pool_size),
        )
        self.in_width = in_width
        self.in_height = in_height
        self.in_channels = in_channels
        self.pool_size = pool_size
        self.stride = stride
        self.out_width = out_w
        self.out_height = out_h

        for c in range(in_channels):
            for oy in range(out_h):
                for ox in range(out_w):
                    out_index = (c * out_h + oy) * out_w + ox
                    self._connect_window(c, oy * stride, ox * stride, out_index)

    def _connect_window(self, c, y0, x0, out_index):
        for dy in range(self.pool_size):
            for dx in range(self.pool_size):
                in_index = (c * self.in_height + y0 + dy) * self.in_width + x0 + dx
                self.connect_weight(in_index, out_index, c)
        self.connect_bias(c, out_index)

    def layer_type(self):
        return 'ave-pool'
