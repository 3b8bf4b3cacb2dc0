"""Exception types raised by the restoration pipeline."""


class WmeraseError(Exception):
    """Base class for all wmerase failures."""


class FetchError(WmeraseError):
    """Model bytes could not be downloaded or read."""


class EngineLoadError(WmeraseError):
    """Inference engine could not be constructed."""


class NotInitializedError(WmeraseError):
    """Inference was requested before the engine was ready."""


class InferenceError(WmeraseError):
    """The inference engine failed while running."""


class CompositionError(WmeraseError):
    """Original and restored buffers cannot be composed."""


class ImageLoadError(WmeraseError):
    """A source image could not be decoded."""


class ImageValidationError(WmeraseError):
    """A source file was rejected before processing."""
