import numpy as np
import pytest
import torch

from styleloop_viewer.errors import ShapeError
from styleloop_viewer.tensor_bridge import StylizedFrame, TensorBridge
from styleloop_viewer.tensors import TensorHandle


@pytest.fixture
def bridge():
    return TensorBridge("cpu")


@pytest.fixture
def pixels():
    rng = np.random.default_rng(7)
    return rng.integers(0, 256, (256, 256, 3), dtype=np.uint8)


class TestEncode:
    def test_encodes_to_normalized_batch_of_one(self, bridge, pixels):
        with bridge.encode(pixels, 256, 256) as handle:
            assert handle.shape == (1, 256, 256, 3)
            assert handle.dtype == torch.float32
            tensor = handle.tensor
            assert float(tensor.min()) >= 0.0
            assert float(tensor.max()) <= 1.0
            assert float(tensor[0, 10, 20, 1]) == pytest.approx(pixels[10, 20, 1] / 255.0)

    def test_accepts_flat_buffer_with_dimensions(self, bridge, pixels):
        flat = pixels.reshape(-1)
        with bridge.encode(flat, 256, 256) as handle:
            assert handle.shape == (1, 256, 256, 3)

    def test_drops_alpha_channel(self, bridge, pixels):
        rgba = np.dstack([pixels, np.full((256, 256), 255, dtype=np.uint8)])
        with bridge.encode(rgba) as rgba_handle, bridge.encode(pixels) as rgb_handle:
            assert rgba_handle.shape == (1, 256, 256, 3)
            assert torch.equal(rgba_handle.tensor, rgb_handle.tensor)

    def test_rectangular_frame_keeps_row_major_layout(self, bridge):
        frame = np.zeros((64, 128, 3), dtype=np.uint8)
        frame[5, 100] = (255, 0, 0)
        with bridge.encode(frame, 128, 64) as handle:
            assert handle.shape == (1, 64, 128, 3)
            assert float(handle.tensor[0, 5, 100, 0]) == 1.0

    def test_buffer_size_mismatch_raises(self, bridge):
        with pytest.raises(ShapeError):
            bridge.encode(np.zeros(100, dtype=np.uint8), 256, 256)

    def test_flat_buffer_without_dimensions_raises(self, bridge, pixels):
        with pytest.raises(ShapeError):
            bridge.encode(pixels.reshape(-1))

    def test_declared_size_mismatch_raises(self, bridge, pixels):
        with pytest.raises(ShapeError):
            bridge.encode(pixels, 128, 256)

    def test_non_uint8_pixels_raise(self, bridge):
        with pytest.raises(ShapeError):
            bridge.encode(np.zeros((8, 8, 3), dtype=np.float32))

    def test_wrong_channel_count_raises(self, bridge):
        with pytest.raises(ShapeError):
            bridge.encode(np.zeros((8, 8, 2), dtype=np.uint8))


class TestDecode:
    def test_round_trip_is_exact(self, bridge, pixels):
        with bridge.encode(pixels, 256, 256) as handle:
            frame = bridge.decode(handle, sequence=3)
        assert isinstance(frame, StylizedFrame)
        assert (frame.width, frame.height, frame.sequence) == (256, 256, 3)
        assert frame.pixels.dtype == np.uint8
        np.testing.assert_array_equal(frame.pixels, pixels)

    def test_accepts_unbatched_tensor(self, bridge):
        frame = bridge.decode(torch.full((32, 48, 3), 0.5))
        assert (frame.height, frame.width) == (32, 48)
        assert frame.pixels.shape == (32, 48, 3)
        assert int(frame.pixels[0, 0, 0]) == 128

    def test_dimensions_come_from_the_tensor(self, bridge):
        frame = bridge.decode(torch.zeros(1, 128, 64, 3))
        assert (frame.width, frame.height) == (64, 128)

    def test_out_of_range_values_are_clamped(self, bridge):
        tensor = torch.tensor([[[-0.5, 0.25, 1.7]]])
        frame = bridge.decode(tensor)
        np.testing.assert_array_equal(frame.pixels[0, 0], [0, 64, 255])

    def test_two_dimensional_tensor_raises(self, bridge):
        with pytest.raises(ShapeError):
            bridge.decode(torch.zeros(16, 16))

    def test_batch_larger_than_one_raises(self, bridge):
        with pytest.raises(ShapeError):
            bridge.decode(torch.zeros(2, 16, 16, 3))

    def test_channels_first_tensor_raises(self, bridge):
        with pytest.raises(ShapeError):
            bridge.decode(torch.zeros(3, 16, 16))

    def test_released_handle_cannot_be_decoded(self, bridge, pixels):
        handle = bridge.encode(pixels)
        handle.release()
        with pytest.raises(RuntimeError):
            bridge.decode(handle)

    def test_decode_does_not_release_the_handle(self, bridge, pixels):
        handle = bridge.encode(pixels)
        bridge.decode(handle)
        assert not handle.released
        handle.release()
        assert isinstance(handle, TensorHandle)
