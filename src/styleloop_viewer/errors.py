class StyleLoopError(Exception):
    """Base class for failures raised by the style feedback loop."""


class AssetLoadError(StyleLoopError):
    """A model package or image could not be fetched or decoded. Fatal at startup."""


class ShapeError(StyleLoopError):
    """A tensor or pixel buffer does not have the expected dimensionality."""


class GPUReadbackFailure(StyleLoopError):
    """Pixel data could not be read back from the render target."""


class SessionNotInitialized(StyleLoopError):
    """transform() was called before the style embedding was computed."""
