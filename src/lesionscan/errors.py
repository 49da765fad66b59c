"""Error taxonomy shared by the crop and classification pipelines."""

from __future__ import annotations


class LesionScanError(Exception):
    """Base class for recoverable scan failures.

    None of these are fatal to the host process; the caller reports them and
    lets the user resubmit.
    """


class DecodeError(LesionScanError, ValueError):
    """The image bytes could not be decoded, or exceed the configured limits."""


class ModelNotReadyError(LesionScanError, RuntimeError):
    """Classification was requested before the model and labels were loaded."""


class InferenceError(LesionScanError, RuntimeError):
    """The model failed to run or returned an output of an unexpected shape."""


class GeometryError(LesionScanError, ValueError):
    """Crop geometry inputs are not finite positive numbers."""
