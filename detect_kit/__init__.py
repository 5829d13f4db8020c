"""
Detection core: letterbox geometry, raw-output decoding, per-class NMS,
model runtime, image codec and drawing.

Works on NumPy arrays; OpenCV is used for resizing, codec and drawing.
Inference runtimes (ONNX Runtime, TorchScript) are only imported when a
network is loaded.
"""

from .types import Box, Detection, DetectionSet, Image, RawOutput
from .letterbox import LetterboxGeometry, letterbox, letterbox_box, letterbox_with_geometry, unletterbox
from .hierarchy import Hierarchy, load_hierarchy
from .nms import iou, nms
from .postprocess import DecodeConfig, Postprocessor, decode
from .metadata import DataConfig, load_class_names, load_data_config
from .runtime import ModelConfig, NetworkHandle, load_model_config, load_network, resolve_path
from .imageio import read_image, write_image
from .visualize import draw_detections

__all__ = [
    "Box",
    "Detection",
    "DetectionSet",
    "Image",
    "RawOutput",
    "LetterboxGeometry",
    "letterbox",
    "letterbox_box",
    "letterbox_with_geometry",
    "unletterbox",
    "Hierarchy",
    "load_hierarchy",
    "iou",
    "nms",
    "DecodeConfig",
    "Postprocessor",
    "decode",
    "DataConfig",
    "load_class_names",
    "load_data_config",
    "ModelConfig",
    "NetworkHandle",
    "load_model_config",
    "load_network",
    "resolve_path",
    "read_image",
    "write_image",
    "draw_detections",
]
