"""
Inference engines behind `detect_kit.runtime.NetworkHandle`.

Each backend module imports its runtime lazily, so decoding, NMS and drawing
work without any inference runtime installed.
"""

from __future__ import annotations

BACKENDS = ("onnxruntime", "torchscript")

__all__ = ["BACKENDS"]
