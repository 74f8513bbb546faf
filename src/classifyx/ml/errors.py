"""Exception hierarchy for the inference engine."""

from __future__ import annotations


class ClassifyXError(Exception):
    """Base class for all engine errors."""


class DecodeError(ClassifyXError):
    """An image file could not be read or decoded."""


class UnsupportedFormatError(ClassifyXError):
    """A model format tag is unknown, or its backend declined to load."""


class LoadError(ClassifyXError):
    """A model or label file could not be loaded."""


class ModelLoadError(LoadError):
    """The model artifact is missing or corrupt."""


class LabelLoadError(LoadError):
    """The label file exists but could not be parsed."""


class NotLoadedError(ClassifyXError):
    """Inference was requested before any model was loaded."""


class DirectoryError(ClassifyXError):
    """A batch directory is missing or unreadable."""


class InferError(ClassifyXError):
    """The backend failed while running a forward pass."""
