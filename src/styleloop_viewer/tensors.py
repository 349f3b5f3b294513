"""Tagged tensor handles with explicit release.

torch frees a tensor once the last reference to it is dropped, so a handle that
still sits in a controller attribute or a closure keeps device memory alive
across cycles. ``TensorHandle`` makes ownership explicit: it records the shape
and a tag, and ``release()`` drops the only reference the loop holds.
``TensorScope`` collects every handle created during one step and releases them
all on exit, on success and on failure alike, except the ones passed to
``keep()``.
"""
import torch


class TensorHandle:
    _live = 0

    def __init__(self, tensor, tag=""):
        if not isinstance(tensor, torch.Tensor):
            raise TypeError(f"TensorHandle expects a torch.Tensor, got {type(tensor).__name__}")
        self._tensor = tensor
        self.tag = tag
        self.shape = tuple(tensor.shape)
        self.dtype = tensor.dtype
        self.device = tensor.device
        TensorHandle._live += 1

    @classmethod
    def live_count(cls):
        """Number of handles created and not yet released."""
        return cls._live

    @property
    def released(self):
        return self._tensor is None

    @property
    def tensor(self):
        if self._tensor is None:
            raise RuntimeError(f"Tensor '{self.tag}' {self.shape} was already released")
        return self._tensor

    def release(self):
        if self._tensor is None:
            return
        self._tensor = None
        TensorHandle._live -= 1

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.release()

    def __repr__(self):
        state = "released" if self.released else str(self.device)
        return f"TensorHandle(tag={self.tag!r}, shape={self.shape}, {state})"


class TensorScope:
    def __init__(self, name=""):
        self.name = name
        self._handles = []

    def track(self, value, tag=""):
        """Registers a tensor (wrapped into a handle) or an existing handle with this scope."""
        handle = value if isinstance(value, TensorHandle) else TensorHandle(value, tag=tag)
        self._handles.append(handle)
        return handle

    def keep(self, handle):
        """Removes a handle from the scope so it survives close()."""
        self._handles = [h for h in self._handles if h is not handle]
        return handle

    def close(self):
        while self._handles:
            self._handles.pop().release()

    def __len__(self):
        return len(self._handles)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
