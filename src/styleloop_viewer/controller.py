import enum
import time
import traceback

from .config import CycleConfig, TriggerPolicy
from .errors import StyleLoopError
from .tensors import TensorScope


class CycleState(enum.Enum):
    UNINITIALIZED = "uninitialized"
    IDLE = "idle"
    CAPTURING = "capturing"
    ENCODING = "encoding"
    INFERRING = "inferring"
    DECODING = "decoding"
    APPLYING = "applying"
    FAULTED = "faulted"


class _Cycle:
    """Per-cycle working set. Every tensor it holds is tracked by ``scope``."""

    def __init__(self, sequence):
        self.sequence = sequence
        self.scope = TensorScope(f"cycle-{sequence}")
        self.started = time.time()
        self.pending = None
        self.frame = None
        self.content = None
        self.result = None
        self.stylized = None

    def release(self):
        self.scope.close()
        self.pending = None
        self.frame = None
        self.content = None
        self.result = None
        self.stylized = None


class CycleController:
    """Sequences capture -> encode -> infer -> decode -> apply against the render loop.

    ``tick()`` is the single entry point from the scheduler. Each tick advances
    the in-flight cycle by one stage, so the render loop gets control back
    between the GPU-bound steps. Capture takes at least two ticks: one to
    issue the readback and one to collect it. A cycle only starts from
    ``IDLE``: triggers arriving while a cycle is in flight are dropped and
    counted, which keeps at most one capture/inference/texture swap pending at
    any time.

    Per-cycle failures move the controller to ``FAULTED``, release the cycle's
    tensors and return it to ``IDLE``; the next trigger starts a fresh cycle.
    Session initialization failures propagate from ``initialize()`` and leave
    the controller ``UNINITIALIZED``.
    """

    def __init__(self, session, capture, feedback, context, config=None, bridge=None):
        self.session = session
        self.capture = capture
        self.feedback = feedback
        self.context = context
        self.config = config or CycleConfig()
        self.bridge = bridge or session.bridge

        self.state = CycleState.UNINITIALIZED
        self.scheduler = None
        self.listeners = []
        self._cycle = None
        self._sequence = 0
        self._stopped = False

        self.completed_cycles = 0
        self.dropped_triggers = 0
        self.faults = 0
        self.last_error = None
        self.last_status = None
        self.last_cycle_seconds = None

        self._stages = {
            CycleState.CAPTURING: self._capture_stage,
            CycleState.ENCODING: self._encode_stage,
            CycleState.INFERRING: self._infer_stage,
            CycleState.DECODING: self._decode_stage,
            CycleState.APPLYING: self._apply_stage,
        }

    # --- Lifecycle ---

    def initialize(self, style_reference):
        """Computes the style embedding, then enters IDLE. AssetLoadError propagates.

        Once initialized, further calls return the cached embedding and leave
        the state, including an in-flight cycle, untouched.
        """
        embedding = self.session.initialize(style_reference)
        if self.state is CycleState.UNINITIALIZED:
            self._set_state(CycleState.IDLE)
        return embedding

    def attach(self, scheduler):
        """Starts ticking on the scheduler and arms the delayed trigger if configured."""
        self.scheduler = scheduler
        self._stopped = False
        scheduler.schedule(self.tick)
        if self.config.trigger_policy is TriggerPolicy.DELAYED:
            scheduler.schedule_once(self._delayed_trigger, self.config.trigger_delay)

    def stop(self):
        """Prevents further cycle starts. An in-flight cycle keeps advancing to completion."""
        self._stopped = True
        if self.scheduler is not None:
            self.scheduler.unschedule(self._delayed_trigger)

    def detach(self):
        """Stops, finishes the in-flight cycle synchronously and stops ticking."""
        self.stop()
        self.drain()
        if self.scheduler is not None:
            self.scheduler.unschedule(self.tick)
            self.scheduler = None

    @property
    def busy(self):
        return self.state in self._stages

    @property
    def max_concurrent_inferences(self):
        return self.session.max_concurrent_inferences

    # --- Triggers ---

    def trigger(self):
        """Starts a cycle if IDLE. Returns False (and counts a drop) otherwise."""
        if self.state is CycleState.UNINITIALIZED or self._stopped:
            return False
        if self.state is not CycleState.IDLE:
            self.dropped_triggers += 1
            return False
        self._sequence += 1
        self._cycle = _Cycle(self._sequence)
        self._set_state(CycleState.CAPTURING)
        return True

    def _delayed_trigger(self, dt):
        if not self.trigger():
            print("DEBUG: Delayed style trigger ignored, controller not idle.")

    def tick(self, dt=0.0):
        if self.config.trigger_policy is TriggerPolicy.CONTINUOUS:
            self.trigger()
        self.step()

    # --- Pipeline ---

    def step(self, wait=False):
        """Runs the current stage once. Returns the state afterwards.

        The capture stage spans ticks: the first step issues the readback, later
        steps poll it. ``wait`` makes a pending readback block instead.
        """
        stage = self._stages.get(self.state)
        if stage is None:
            return self.state
        cycle = self._cycle
        try:
            next_state = stage(cycle, wait)
        except Exception as e:
            self._fault(cycle, e)
            return self.state
        if next_state is CycleState.IDLE:
            self._finish(cycle)
        elif next_state is not self.state:
            self._set_state(next_state)
        return self.state

    def drain(self):
        while self.busy:
            self.step(wait=True)

    def run_cycle(self):
        """Triggers and runs one full cycle synchronously. Returns the feedback status or None."""
        if not self.trigger():
            return None
        self.drain()
        return self.last_status

    def _capture_stage(self, cycle, wait):
        if cycle.pending is None:
            cycle.pending = self.capture.begin(self.context.render_target, sequence=cycle.sequence)
            if not wait:
                return CycleState.CAPTURING
        frame = self.capture.poll(cycle.pending, wait=wait)
        if frame is None:
            return CycleState.CAPTURING
        cycle.pending = None
        cycle.frame = frame
        return CycleState.ENCODING

    def _encode_stage(self, cycle, wait):
        frame = cycle.frame
        cycle.content = cycle.scope.track(self.bridge.encode(frame.pixels, frame.width, frame.height))
        cycle.frame = None
        return CycleState.INFERRING

    def _infer_stage(self, cycle, wait):
        cycle.result = cycle.scope.track(self.session.transform(cycle.content))
        cycle.content.release()
        return CycleState.DECODING

    def _decode_stage(self, cycle, wait):
        cycle.stylized = self.bridge.decode(cycle.result, sequence=cycle.sequence)
        cycle.result.release()
        return CycleState.APPLYING

    def _apply_stage(self, cycle, wait):
        self.last_status = self.feedback.apply(cycle.stylized, self.context.material)
        return CycleState.IDLE

    def _finish(self, cycle):
        self._release_cycle(cycle)
        self.completed_cycles += 1
        self.last_cycle_seconds = time.time() - cycle.started
        self._set_state(CycleState.IDLE)

    def _fault(self, cycle, error):
        stage = self.state
        self._set_state(CycleState.FAULTED)
        self.faults += 1
        self.last_error = error
        print(f"Error in style cycle {cycle.sequence} while {stage.value}: {error}")
        if not isinstance(error, (StyleLoopError, RuntimeError)):
            traceback.print_exc()
        self._release_cycle(cycle)
        self._set_state(CycleState.IDLE)

    def _release_cycle(self, cycle):
        try:
            if cycle.pending is not None:
                self.capture.cancel(cycle.pending)
        finally:
            cycle.release()
            self._cycle = None

    def _set_state(self, new_state):
        previous = self.state
        self.state = new_state
        for listener in self.listeners:
            listener(previous, new_state)
