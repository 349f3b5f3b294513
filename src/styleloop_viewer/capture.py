import time
from dataclasses import dataclass, field
from typing import Any, Optional

import numpy as np

from .config import CapturePolicy
from .errors import GPUReadbackFailure


@dataclass
class CapturedFrame:
    pixels: np.ndarray  # [H, W, 3] uint8, top-down rows
    width: int
    height: int
    timestamp: float = field(default_factory=time.time)
    sequence: Optional[int] = None


@dataclass
class PendingCapture:
    """A readback issued to the GPU whose pixels have not been collected yet."""
    render_target: Any
    sequence: Optional[int] = None
    holds_suspension: bool = False
    polls: int = 0
    issued: float = field(default_factory=time.time)
    done: bool = False


class FrameCapture:
    """Reads the rendered image back from a render target, across ticks.

    The render target provides ``width``, ``height`` and a two-phase read:
    ``begin_read()`` queues the copy on the GPU, ``read_ready()`` reports
    whether it finished without blocking, ``finish_read()`` returns the
    top-down [H, W, 3|4] uint8 pixels (waiting if needed) and
    ``cancel_read()`` drops a pending read.

    Under ``CapturePolicy.PAUSED`` the scheduler is suspended from ``begin()``
    until the pixels are collected, so ``begin_frame()`` refuses new frames for
    every tick the read is in flight. Under ``CapturePolicy.LIVE`` the render
    loop keeps drawing while the copy completes.
    """

    def __init__(self, scheduler=None, policy=CapturePolicy.PAUSED):
        if policy is CapturePolicy.PAUSED and scheduler is None:
            raise ValueError("The paused capture policy needs a scheduler to suspend")
        self.scheduler = scheduler
        self.policy = policy
        self.reads = 0
        self.suspended_reads = 0

    def begin(self, render_target, sequence=None):
        """Issues the readback. Returns a PendingCapture to poll on later ticks."""
        pending = PendingCapture(render_target, sequence, holds_suspension=self.policy is CapturePolicy.PAUSED)
        if pending.holds_suspension:
            self.scheduler.suspend()
        try:
            render_target.begin_read()
        except Exception as e:
            self._end(pending)
            raise GPUReadbackFailure(f"Issuing readback of {render_target!r} failed: {e}") from e
        if pending.holds_suspension:
            self.suspended_reads += 1
        return pending

    def poll(self, pending, wait=False):
        """Returns the CapturedFrame once the read completed, else None. ``wait`` blocks until it does."""
        render_target = pending.render_target
        try:
            if not wait and not render_target.read_ready():
                pending.polls += 1
                return None
            pixels = render_target.finish_read()
        except Exception as e:
            self.cancel(pending)
            raise GPUReadbackFailure(f"Reading back {render_target!r} failed: {e}") from e
        self._end(pending)
        self.reads += 1
        return CapturedFrame(
            pixels=self._validate(render_target, pixels),
            width=render_target.width,
            height=render_target.height,
            sequence=pending.sequence,
        )

    def cancel(self, pending):
        """Drops a pending read and lifts its suspension. No-op once the read ended."""
        if pending.done:
            return
        try:
            pending.render_target.cancel_read()
        finally:
            self._end(pending)

    def capture(self, render_target, sequence=None):
        """Issues a read and waits for it in one call."""
        return self.poll(self.begin(render_target, sequence), wait=True)

    def _end(self, pending):
        if pending.done:
            return
        pending.done = True
        if pending.holds_suspension:
            self.scheduler.resume()

    @staticmethod
    def _validate(render_target, pixels):
        if pixels is None:
            raise GPUReadbackFailure(f"{render_target!r} returned no pixel data")
        pixels = np.asarray(pixels)
        expected = (render_target.height, render_target.width)
        if pixels.ndim != 3 or pixels.shape[:2] != expected or pixels.shape[2] not in (3, 4):
            raise GPUReadbackFailure(
                f"Readback returned {pixels.shape}, expected {expected[0]}x{expected[1]} RGB/RGBA")
        if pixels.dtype != np.uint8:
            raise GPUReadbackFailure(f"Readback returned {pixels.dtype} pixels, expected uint8")
        return np.ascontiguousarray(pixels[:, :, :3])
