from dataclasses import dataclass
from typing import Optional

import numpy as np
import torch

from .errors import ShapeError
from .tensors import TensorHandle


@dataclass
class StylizedFrame:
    pixels: np.ndarray  # [H, W, 3] uint8, top-down rows
    width: int
    height: int
    sequence: Optional[int] = None


class TensorBridge:
    """Converts uint8 pixel buffers to normalized [1, H, W, 3] float tensors and back."""

    def __init__(self, device="cpu"):
        self.device = torch.device(device)

    def _as_image(self, pixels, width, height):
        pixels = np.asarray(pixels)
        if pixels.dtype != np.uint8:
            raise ShapeError(f"Expected uint8 pixels, got {pixels.dtype}")
        if pixels.ndim == 1:
            if not width or not height:
                raise ShapeError("A flat pixel buffer needs width and height")
            channels, remainder = divmod(pixels.size, width * height)
            if remainder or channels not in (3, 4):
                raise ShapeError(f"Buffer of {pixels.size} bytes does not match {width}x{height} RGB/RGBA")
            pixels = pixels.reshape(height, width, channels)
        if pixels.ndim != 3 or pixels.shape[2] not in (3, 4):
            raise ShapeError(f"Expected pixels of shape [H, W, 3|4], got {pixels.shape}")
        if (width and pixels.shape[1] != width) or (height and pixels.shape[0] != height):
            raise ShapeError(f"Pixels {pixels.shape[1]}x{pixels.shape[0]} do not match {width}x{height}")
        # Alpha is dropped, the models take RGB only.
        return np.ascontiguousarray(pixels[:, :, :3])

    def encode(self, pixels, width=None, height=None, tag="content"):
        image = self._as_image(pixels, width, height)
        tensor = torch.from_numpy(image).to(self.device).float().div_(255.0).unsqueeze(0)
        return TensorHandle(tensor, tag=tag)

    def decode(self, tensor, sequence=None):
        if isinstance(tensor, TensorHandle):
            tensor = tensor.tensor
        tensor = tensor.detach()
        if tensor.dim() == 4 and tensor.shape[0] == 1:
            tensor = tensor[0]
        if tensor.dim() != 3:
            raise ShapeError(f"Expected a [H, W, 3] tensor after batch removal, got {tuple(tensor.shape)}")
        if tensor.shape[2] != 3:
            raise ShapeError(f"Expected 3 channels in the last dimension, got {tuple(tensor.shape)}")

        height, width = int(tensor.shape[0]), int(tensor.shape[1])
        pixels = tensor.float().clamp(0.0, 1.0).mul(255.0).round().to(torch.uint8).cpu().numpy()
        return StylizedFrame(pixels=np.ascontiguousarray(pixels), width=width, height=height, sequence=sequence)
