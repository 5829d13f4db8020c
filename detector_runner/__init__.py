"""
Detection runner built on top of `detect_kit`.

`detect_kit` holds the frame-level algorithms; this package adds
- run configuration (data config, options, JSON run config)
- capture ingestion and display/video sinks
- the test/demo orchestrator and the command-line entry point
"""

from __future__ import annotations

from .config import Config, Options, load_config
from .errors import ConfigError, DetectorError, InferenceError, InputError, ModelLoadError, OutputError, UsageError
from .pipeline import Collaborators, DetectionPipeline, DetectorRunner, Mode, PipelineState, RunResult, run

__all__ = [
    "Config",
    "Options",
    "load_config",
    "ConfigError",
    "DetectorError",
    "InferenceError",
    "InputError",
    "ModelLoadError",
    "OutputError",
    "UsageError",
    "Collaborators",
    "DetectionPipeline",
    "DetectorRunner",
    "Mode",
    "PipelineState",
    "RunResult",
    "run",
]
