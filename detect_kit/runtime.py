from __future__ import annotations

import json
import logging
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Tuple, Union

import numpy as np

from .backends import BACKENDS
from .types import Image, RawOutput

PathLike = Union[str, Path]

LOGGER = logging.getLogger(__name__)


def resolve_path(path: PathLike, root: Optional[PathLike] = None) -> Path:
    """
    Absolute paths are returned as-is; relative ones resolve against `root`
    (the current directory when None).
    """

    p = Path(path)
    if p.is_absolute():
        return p
    base = Path(root).resolve() if root is not None else Path.cwd()
    return (base / p).resolve()


def infer_backend(weights_path: PathLike) -> str:
    suffix = Path(weights_path).suffix.lower()
    if suffix == ".onnx":
        return "onnxruntime"
    if suffix in {".torchscript", ".ts", ".pt"}:
        return "torchscript"
    raise ValueError(f"Could not infer backend from extension '{suffix}'. Set \"backend\" in the model config.")


@dataclass(frozen=True)
class ModelConfig:
    """
    Network description read from the model config JSON.

    width/height 0 means "take it from the model" (or run without letterboxing
    when the model does not declare it either).
    """

    classes: int
    width: int = 0
    height: int = 0
    channels: int = 3
    backend: Optional[str] = None
    weights: Optional[Path] = None
    normalized_boxes: bool = True
    has_objectness: Optional[bool] = None
    onnx_providers: Optional[Tuple[str, ...]] = None
    device: str = "cpu"
    half: bool = False
    output_index: int = 0

    def __post_init__(self) -> None:
        if self.classes <= 0:
            raise ValueError("classes must be > 0")
        if self.width < 0 or self.height < 0:
            raise ValueError("width/height must be >= 0")
        if self.channels <= 0:
            raise ValueError("channels must be > 0")
        if self.backend is not None and self.backend not in BACKENDS:
            raise ValueError(f"Unsupported backend: {self.backend!r} (expected one of {BACKENDS})")
        if self.output_index < 0:
            raise ValueError("output_index must be >= 0")


def _require_int(payload: Dict[str, Any], key: str, default: Optional[int] = None) -> int:
    if key not in payload:
        if default is None:
            raise ValueError(f"Missing required key: {key}")
        return default
    value = payload[key]
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{key} must be an integer")
    return int(value)


def _optional_bool(payload: Dict[str, Any], key: str, default: Optional[bool]) -> Optional[bool]:
    value = payload.get(key, default)
    if value is not None and not isinstance(value, bool):
        raise ValueError(f"{key} must be a boolean")
    return value


def load_model_config(path: PathLike) -> ModelConfig:
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"Model config not found: {p}")
    try:
        payload = json.loads(p.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ValueError(f"Invalid model config JSON: {p}") from exc
    if not isinstance(payload, dict):
        raise ValueError("Model config must be a JSON object")

    allowed = {
        "classes",
        "width",
        "height",
        "channels",
        "backend",
        "weights",
        "normalized_boxes",
        "has_objectness",
        "onnx_providers",
        "device",
        "half",
        "output_index",
    }
    unknown = sorted(set(payload.keys()) - allowed)
    if unknown:
        raise ValueError(f"Unknown model config keys: {unknown}")

    weights = payload.get("weights")
    if weights is not None and (not isinstance(weights, str) or not weights.strip()):
        raise ValueError("weights must be a non-empty string")
    backend = payload.get("backend")
    if backend is not None and not isinstance(backend, str):
        raise ValueError("backend must be a string")
    providers = payload.get("onnx_providers")
    if providers is not None:
        if not isinstance(providers, list) or not all(isinstance(x, str) and x.strip() for x in providers):
            raise ValueError("onnx_providers must be a list of provider names")
        providers = tuple(x.strip() for x in providers)
    device = payload.get("device", "cpu")
    if not isinstance(device, str):
        raise ValueError("device must be a string")

    return ModelConfig(
        classes=_require_int(payload, "classes"),
        width=_require_int(payload, "width", 0),
        height=_require_int(payload, "height", 0),
        channels=_require_int(payload, "channels", 3),
        backend=backend.lower() if backend else None,
        weights=resolve_path(weights, root=p.parent) if weights else None,
        normalized_boxes=bool(_optional_bool(payload, "normalized_boxes", True)),
        has_objectness=_optional_bool(payload, "has_objectness", None),
        onnx_providers=providers,
        device=device,
        half=bool(_optional_bool(payload, "half", False)),
        output_index=_require_int(payload, "output_index", 0),
    )


class NetworkHandle:
    """
    A loaded network: input geometry, class count and `predict`.

    `infer_fn` takes an NCHW float32 blob and returns the raw model output.
    """

    def __init__(
        self,
        infer_fn: Callable[[np.ndarray], np.ndarray],
        *,
        width: int,
        height: int,
        channels: int,
        num_classes: int,
        normalized_boxes: bool = True,
        has_objectness: Optional[bool] = None,
        backend: Optional[object] = None,
        backend_name: Optional[str] = None,
    ):
        self._infer_fn = infer_fn
        self.width = width
        self.height = height
        self.channels = channels
        self.num_classes = num_classes
        self.normalized_boxes = normalized_boxes
        self.has_objectness = has_objectness
        self.backend = backend
        self.backend_name = backend_name

    def check_input(self, image: Image) -> None:
        if image.channels != self.channels:
            raise ValueError(f"Network expects {self.channels} channels, got {image.channels}")
        if self.width and image.width != self.width:
            raise ValueError(f"Network expects width {self.width}, got {image.width}")
        if self.height and image.height != self.height:
            raise ValueError(f"Network expects height {self.height}, got {image.height}")

    def predict(self, image: Image) -> RawOutput:
        self.check_input(image)
        blob = image.data[None, ...]
        preds = self._infer_fn(blob)
        return RawOutput.from_array(
            preds,
            num_classes=self.num_classes,
            has_objectness=self.has_objectness,
            normalized=self.normalized_boxes,
            net_size=(image.width, image.height),
        )

    def __repr__(self) -> str:
        return (
            f"NetworkHandle(backend={self.backend_name!r}, width={self.width}, height={self.height}, "
            f"channels={self.channels}, classes={self.num_classes})"
        )


def load_network(model_config_path: PathLike, weights_path: Optional[PathLike] = None) -> NetworkHandle:
    """
    Load a network from its model config and weights.

    `weights_path` overrides the config's "weights" entry; the backend is taken
    from the config or inferred from the weights extension.
    """

    cfg = load_model_config(model_config_path)
    if weights_path is not None:
        cfg = replace(cfg, weights=resolve_path(weights_path))
    if cfg.weights is None:
        raise ValueError("No weights given: pass a weights path or set \"weights\" in the model config.")

    chosen = cfg.backend or infer_backend(cfg.weights)
    LOGGER.debug("Loading %s weights from %s", chosen, cfg.weights)

    if chosen == "onnxruntime":
        from .backends.onnxruntime_backend import OnnxRuntimeBackend, OnnxRuntimeBackendConfig

        backend = OnnxRuntimeBackend(
            cfg.weights,
            OnnxRuntimeBackendConfig(providers=cfg.onnx_providers, output_index=cfg.output_index),
        )
        _, declared_h, declared_w = backend.input_size()
        width = cfg.width or declared_w
        height = cfg.height or declared_h
        infer_fn = backend.infer
    else:
        from .backends.torchscript_backend import TorchScriptBackend, TorchScriptBackendConfig

        backend = TorchScriptBackend(
            cfg.weights,
            TorchScriptBackendConfig(device=cfg.device, half=cfg.half, output_index=cfg.output_index),
        )
        width, height = cfg.width, cfg.height
        infer_fn = backend.infer

    return NetworkHandle(
        infer_fn,
        width=width,
        height=height,
        channels=cfg.channels,
        num_classes=cfg.classes,
        normalized_boxes=cfg.normalized_boxes,
        has_objectness=cfg.has_objectness,
        backend=backend,
        backend_name=chosen,
    )
