from __future__ import annotations


class DetectorError(Exception):
    """Base class for every error the runner reports to the user."""

    exit_code = 1


class UsageError(DetectorError, ValueError):
    """Malformed invocation: unknown mode, missing required paths."""

    exit_code = 2


class ConfigError(DetectorError, ValueError):
    """Bad or missing data config, label list or option value."""


class ModelLoadError(DetectorError, RuntimeError):
    """Network config or weights could not be loaded. Always fatal."""


class InputError(DetectorError, FileNotFoundError):
    """Missing or undecodable input frame."""


class InferenceError(DetectorError, RuntimeError):
    """Forward pass failed, typically on an input size mismatch."""


class OutputError(DetectorError, RuntimeError):
    """Annotated image or video could not be written."""
