import os
import concurrent.futures

import numpy as np
import torch

from .errors import AssetLoadError, ShapeError, SessionNotInitialized
from .file_io import load_image, load_model
from .tensor_bridge import TensorBridge
from .tensors import TensorHandle, TensorScope


def resolve_device(device="auto"):
    if device in (None, "auto"):
        return torch.device("cuda" if torch.cuda.is_available() else "cpu")
    return torch.device(device)


class StyleEmbedding:
    """Style signature produced once by the encoder. Read-only for the session's lifetime."""

    def __init__(self, handle):
        self._handle = handle

    @property
    def tensor(self):
        return self._handle.tensor

    @property
    def shape(self):
        return self._handle.shape

    @property
    def released(self):
        return self._handle.released

    def release(self):
        self._handle.release()

    def __repr__(self):
        return f"StyleEmbedding(shape={self.shape})"


class InferenceSession:
    """Owns the style encoder, the transform network and the cached style embedding.

    Both models are TorchScript packages. ``model_layout`` describes the image
    layout the models consume: ``"nhwc"`` matches the bridge's tensors,
    ``"nchw"`` makes the session permute images around each model call. The
    embedding is passed to the transform network exactly as the encoder
    produced it.
    """

    def __init__(self, encoder_model, transform_model, device="auto", model_layout="nhwc",
                 bridge=None, model_loader=load_model):
        if model_layout not in ("nhwc", "nchw"):
            raise ValueError(f"Unknown model layout: {model_layout}")
        self.encoder_location = encoder_model
        self.transform_location = transform_model
        self.device = resolve_device(device)
        self.model_layout = model_layout
        self.bridge = bridge or TensorBridge(self.device)
        self._model_loader = model_loader

        self.encoder = None
        self.transformer = None
        self.embedding = None

        self.inference_calls = 0
        self.active_inferences = 0
        self.max_concurrent_inferences = 0

    @property
    def initialized(self):
        return self.embedding is not None

    def load_models(self):
        """Loads both model packages concurrently. Either failing raises AssetLoadError naming it."""
        if self.encoder is not None and self.transformer is not None:
            return
        print(f"DEBUG: Loading style models on {self.device}...")
        with concurrent.futures.ThreadPoolExecutor(max_workers=2) as pool:
            futures = {
                "style encoder": pool.submit(self._model_loader, self.encoder_location, self.device),
                "style transform": pool.submit(self._model_loader, self.transform_location, self.device),
            }
            models, errors = {}, []
            for name, future in futures.items():
                try:
                    models[name] = future.result()
                except AssetLoadError as e:
                    errors.append(f"{name}: {e}")
        if errors:
            raise AssetLoadError("Model loading failed - " + "; ".join(errors))
        self.encoder = models["style encoder"]
        self.transformer = models["style transform"]
        print("DEBUG: Style models loaded.")

    def initialize(self, style_reference):
        """Computes and caches the style embedding from an image path/URL or RGB pixel array."""
        if self.embedding is not None:
            return self.embedding
        self.load_models()

        if isinstance(style_reference, (str, os.PathLike)):
            pixels = load_image(style_reference)
        else:
            pixels = np.asarray(style_reference)

        with TensorScope("style") as scope:
            try:
                style = scope.track(self.bridge.encode(pixels, tag="style_reference"))
            except ShapeError as e:
                raise AssetLoadError(f"Style reference could not be decoded: {e}") from e
            with torch.inference_mode():
                model_input = scope.track(self._to_model_layout(style.tensor), tag="style_input")
                bottleneck = self.encoder(model_input.tensor)
            if not isinstance(bottleneck, torch.Tensor):
                raise ShapeError(f"Style encoder returned {type(bottleneck).__name__}, expected a tensor")
            self.embedding = StyleEmbedding(TensorHandle(bottleneck, tag="style_embedding"))

        print(f"DEBUG: Style embedding computed, shape {self.embedding.shape}")
        return self.embedding

    def transform(self, content, embedding=None):
        """Stylizes one content frame.

        ``content`` is a [1, H, W, 3] TensorHandle/tensor or an RGB pixel array.
        Returns a [H', W', 3] TensorHandle (spatial size is whatever the model
        emits); the caller owns it and must release it. ``embedding`` defaults to
        the cached one and may be a StyleEmbedding, a TensorHandle or a tensor.
        """
        if self.embedding is None:
            raise SessionNotInitialized("InferenceSession.initialize() must run before transform()")
        if embedding is None:
            embedding = self.embedding
        style = embedding.tensor if isinstance(embedding, (StyleEmbedding, TensorHandle)) else embedding

        self.active_inferences += 1
        self.max_concurrent_inferences = max(self.max_concurrent_inferences, self.active_inferences)
        self.inference_calls += 1
        try:
            with TensorScope("transform") as scope, torch.inference_mode():
                if isinstance(content, np.ndarray):
                    content = scope.track(self.bridge.encode(content))
                content_tensor = content.tensor if isinstance(content, TensorHandle) else content
                if content_tensor.dim() == 3:
                    content_tensor = content_tensor.unsqueeze(0)
                if content_tensor.dim() != 4 or content_tensor.shape[0] != 1:
                    raise ShapeError(f"Expected a [1, H, W, 3] content tensor, got {tuple(content_tensor.shape)}")

                model_input = scope.track(self._to_model_layout(content_tensor), tag="content_input")
                output = self.transformer(model_input.tensor, style)
                if not isinstance(output, torch.Tensor):
                    raise ShapeError(f"Transform network returned {type(output).__name__}, expected a tensor")
                output = scope.track(self._from_model_layout(output), tag="model_output")

                stylized = output.tensor
                if stylized.dim() == 4:
                    if stylized.shape[0] != 1:
                        raise ShapeError(f"Expected batch size 1 from the transform network, got {tuple(stylized.shape)}")
                    stylized = stylized.squeeze(0)
                return TensorHandle(stylized, tag="stylized")
        finally:
            self.active_inferences -= 1

    def _to_model_layout(self, images):
        if self.model_layout == "nchw" and images.dim() == 4:
            return images.permute(0, 3, 1, 2).contiguous()
        return images

    def _from_model_layout(self, images):
        if self.model_layout == "nchw" and images.dim() == 4:
            return images.permute(0, 2, 3, 1).contiguous()
        if self.model_layout == "nchw" and images.dim() == 3:
            return images.permute(1, 2, 0).contiguous()
        return images

    def release(self):
        if self.embedding is not None:
            self.embedding.release()
            self.embedding = None
        self.encoder = None
        self.transformer = None
        if self.device.type == "cuda":
            torch.cuda.empty_cache()
