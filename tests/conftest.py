"""
Shared fixtures for all tests.

Provides tiny scripted TorchScript style models, a fake render target, a fake
texture factory and a scheduler driven by a manual pyglet clock, so the style
loop can be exercised without a window or GL context.
"""
import sys
from pathlib import Path

import numpy as np
import pyglet
import pytest
import torch

# Add src directory to path for imports
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT / "src"))

from styleloop_viewer.capture import FrameCapture
from styleloop_viewer.config import CapturePolicy, CycleConfig, TriggerPolicy
from styleloop_viewer.controller import CycleController
from styleloop_viewer.feedback import TextureFeedback
from styleloop_viewer.inference_logic import InferenceSession
from styleloop_viewer.materials import TexturedMaterial
from styleloop_viewer.scene import SceneContext
from styleloop_viewer.scheduler import FrameScheduler

EMBEDDING_DIM = 8


# =============================================================================
# Tiny style models
# =============================================================================

class TinyStyleEncoder(torch.nn.Module):
    """[1, H, W, 3] style image -> [1, 1, 1, EMBEDDING_DIM] bottleneck."""

    def __init__(self):
        super().__init__()
        self.proj = torch.nn.Linear(3, EMBEDDING_DIM)

    def forward(self, style: torch.Tensor) -> torch.Tensor:
        pooled = style.mean(dim=[1, 2])
        return self.proj(pooled).reshape(1, 1, 1, -1)


class TinyStyleTransform(torch.nn.Module):
    """Tints the content frame with a colour derived from the bottleneck, optionally rescaling it."""

    def __init__(self, scale: float = 1.0):
        super().__init__()
        self.scale = scale
        self.mix = torch.nn.Linear(EMBEDDING_DIM, 3)

    def forward(self, content: torch.Tensor, style: torch.Tensor) -> torch.Tensor:
        tint = torch.sigmoid(self.mix(style.reshape(1, -1))).reshape(1, 1, 1, 3)
        out = content * tint
        if self.scale != 1.0:
            out = torch.nn.functional.interpolate(
                out.permute(0, 3, 1, 2), scale_factor=self.scale, mode="nearest").permute(0, 2, 3, 1)
        return out


class TinyStyleEncoderNCHW(torch.nn.Module):
    def __init__(self):
        super().__init__()
        self.proj = torch.nn.Linear(3, EMBEDDING_DIM)

    def forward(self, style: torch.Tensor) -> torch.Tensor:
        pooled = style.mean(dim=[2, 3])
        return self.proj(pooled).reshape(1, 1, 1, -1)


class TinyStyleTransformNCHW(torch.nn.Module):
    def __init__(self):
        super().__init__()
        self.mix = torch.nn.Linear(EMBEDDING_DIM, 3)

    def forward(self, content: torch.Tensor, style: torch.Tensor) -> torch.Tensor:
        tint = torch.sigmoid(self.mix(style.reshape(1, -1))).reshape(1, 3, 1, 1)
        return content * tint


class FlatteningTransform(torch.nn.Module):
    """Broken transform network: drops the channel dimension."""

    def forward(self, content: torch.Tensor, style: torch.Tensor) -> torch.Tensor:
        return content.mean(dim=[3]) + style.mean()


def _save_scripted(module_cls, path, *args):
    torch.manual_seed(0)
    torch.jit.script(module_cls(*args).eval()).save(str(path))
    return str(path)


@pytest.fixture(scope="session")
def model_files(tmp_path_factory):
    """Paths of the scripted test models, keyed by role."""
    model_dir = tmp_path_factory.mktemp("models")
    return {
        "encoder": _save_scripted(TinyStyleEncoder, model_dir / "style_encoder.pt"),
        "transform": _save_scripted(TinyStyleTransform, model_dir / "style_transform.pt"),
        "transform_half": _save_scripted(TinyStyleTransform, model_dir / "style_transform_half.pt", 0.5),
        "encoder_nchw": _save_scripted(TinyStyleEncoderNCHW, model_dir / "style_encoder_nchw.pt"),
        "transform_nchw": _save_scripted(TinyStyleTransformNCHW, model_dir / "style_transform_nchw.pt"),
        "transform_flat": _save_scripted(FlatteningTransform, model_dir / "style_transform_flat.pt"),
    }


# =============================================================================
# Image fixtures
# =============================================================================

@pytest.fixture(scope="session")
def style_image():
    """256x256 RGB style reference."""
    rng = np.random.default_rng(42)
    return rng.integers(0, 256, (256, 256, 3), dtype=np.uint8)


@pytest.fixture
def make_session(model_files):
    def _make(encoder="encoder", transform="transform", **kwargs):
        kwargs.setdefault("device", "cpu")
        return InferenceSession(model_files.get(encoder, encoder), model_files.get(transform, transform), **kwargs)
    return _make


# =============================================================================
# Fake render backend
# =============================================================================

class FakeRenderTarget:
    """Stands in for the offscreen framebuffer's two-phase readback.

    ``latency`` is the number of ``read_ready()`` polls that report the copy as
    still in flight. ``log`` records issue/complete/cancel and frames drawn.
    """

    def __init__(self, width=256, height=256, scheduler=None, channels=3, seed=0, latency=0):
        self.width = width
        self.height = height
        self.scheduler = scheduler
        self.latency = latency
        rng = np.random.default_rng(seed)
        self.pixels = rng.integers(0, 256, (height, width, channels), dtype=np.uint8)
        self.fail = False
        self.reads = 0
        self.suspended_during_reads = []
        self.log = []
        self._remaining = None

    def begin_read(self):
        if self.scheduler is not None:
            self.suspended_during_reads.append(self.scheduler.is_suspended)
        if self.fail:
            raise RuntimeError("glReadPixels failed with GL error 0x502")
        if self._remaining is not None:
            raise RuntimeError("A readback is already pending on this target")
        self._remaining = self.latency
        self.log.append("issue")

    def read_ready(self):
        if self._remaining is None:
            raise RuntimeError("No readback pending on this target")
        if self._remaining > 0:
            self._remaining -= 1
            return False
        return True

    def finish_read(self):
        if self._remaining is None:
            raise RuntimeError("No readback pending on this target")
        self._remaining = None
        self.reads += 1
        self.log.append("complete")
        return self.pixels.copy()

    def cancel_read(self):
        self._remaining = None
        self.log.append("cancel")

    @property
    def read_pending(self):
        return self._remaining is not None

    def draw(self):
        self.log.append("draw")


class FakeTexture:
    def __init__(self, pixels, width, height, sampling):
        self.pixels = pixels.copy()
        self.width = width
        self.height = height
        self.sampling = sampling
        self.delete_calls = 0

    @property
    def deleted(self):
        return self.delete_calls > 0

    def delete(self):
        self.delete_calls += 1


class FakeTextureFactory:
    def __init__(self):
        self.created = []

    def __call__(self, pixels, width, height, sampling):
        texture = FakeTexture(pixels, width, height, sampling)
        self.created.append(texture)
        return texture

    @property
    def live(self):
        return [t for t in self.created if not t.deleted]


@pytest.fixture
def texture_factory():
    return FakeTextureFactory()


@pytest.fixture
def textured_material(texture_factory):
    initial = texture_factory(np.zeros((4, 4, 3), dtype=np.uint8), 4, 4, "linear")
    return TexturedMaterial("surface", albedo_texture=initial)


# =============================================================================
# Scheduling
# =============================================================================

class ManualTime:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def manual_time():
    return ManualTime()


@pytest.fixture
def scheduler(manual_time):
    return FrameScheduler(pyglet.clock.Clock(time_function=manual_time))


@pytest.fixture
def render_target(scheduler):
    return FakeRenderTarget(256, 256, scheduler=scheduler)


@pytest.fixture
def make_controller(make_session, scheduler, render_target, textured_material, texture_factory):
    """Builds a controller over the fake backend. Not initialized."""
    def _make(capture_policy=CapturePolicy.PAUSED, trigger_policy=TriggerPolicy.MANUAL, trigger_delay=3.0,
              material=None, session=None, **session_kwargs):
        session = session or make_session(**session_kwargs)
        config = CycleConfig(capture_policy=capture_policy, trigger_policy=trigger_policy, trigger_delay=trigger_delay)
        context = SceneContext(render_target=render_target, material=material or textured_material)
        capture = FrameCapture(scheduler, capture_policy)
        feedback = TextureFeedback(texture_factory)
        return CycleController(session, capture, feedback, context, config=config)
    return _make
