from contextlib import contextmanager

import pyglet


class FrameScheduler:
    """Explicit scheduling contract between the render loop and the style cycle.

    Wraps a ``pyglet.clock.Clock`` (the application's default clock unless one
    is passed in) and owns the frame boundary: the window asks
    ``begin_frame()`` before drawing into the render target, and a paused
    capture holds ``suspend()`` from issuing a readback until its pixels are
    mapped, so no frame is started in between.
    """

    def __init__(self, clock=None):
        self.clock = clock or pyglet.clock.get_default()
        self._suspend_depth = 0
        self.frames_rendered = 0
        self.frames_skipped = 0

    def schedule(self, callback):
        self.clock.schedule(callback)

    def schedule_once(self, callback, delay):
        self.clock.schedule_once(callback, delay)

    def unschedule(self, callback):
        self.clock.unschedule(callback)

    def tick(self):
        """Advances the wrapped clock, running everything that is due. Returns dt."""
        return self.clock.tick()

    @property
    def is_suspended(self):
        return self._suspend_depth > 0

    def suspend(self):
        """Holds the frame boundary until the matching resume(). Calls nest."""
        self._suspend_depth += 1

    def resume(self):
        if self._suspend_depth == 0:
            raise RuntimeError("resume() without a matching suspend()")
        self._suspend_depth -= 1

    @contextmanager
    def suspended(self):
        self.suspend()
        try:
            yield self
        finally:
            self.resume()

    def begin_frame(self):
        """Returns True if a new frame may be rendered into the target."""
        if self.is_suspended:
            self.frames_skipped += 1
            return False
        self.frames_rendered += 1
        return True
