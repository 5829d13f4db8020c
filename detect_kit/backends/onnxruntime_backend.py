from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence, Tuple, Union

import numpy as np

PathLike = Union[str, Path]

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class OnnxRuntimeBackendConfig:
    """
    - providers: execution providers in priority order; ones this build lacks are dropped
    - output_index: which graph output carries the detections
    """

    providers: Optional[Sequence[str]] = None
    output_index: int = 0


def _select_providers(requested: Optional[Sequence[str]], available: Sequence[str]) -> Optional[List[str]]:
    if requested is None:
        return None
    chosen = [p for p in requested if p in available]
    missing = [p for p in requested if p not in available]
    if missing:
        LOGGER.warning("Execution providers not available in this onnxruntime build: %s", ", ".join(missing))
    return chosen or ["CPUExecutionProvider"]


class OnnxRuntimeBackend:
    """
    Runs an exported detector graph on an NCHW blob and returns one output array.
    """

    def __init__(self, model_path: PathLike, cfg: OnnxRuntimeBackendConfig = OnnxRuntimeBackendConfig()):
        try:
            import onnxruntime as ort  # type: ignore
        except ImportError as e:  # pragma: no cover
            raise ImportError(
                "onnxruntime is required for the ONNX backend. Install it with `pip install onnxruntime` "
                "(or `onnxruntime-gpu`)."
            ) from e

        self.model_path = Path(model_path)
        if not self.model_path.exists():
            raise FileNotFoundError(f"ONNX model not found: {self.model_path}")

        providers = _select_providers(cfg.providers, ort.get_available_providers())
        self.session = ort.InferenceSession(str(self.model_path), providers=providers)

        graph_input = self.session.get_inputs()[0]
        outputs = self.session.get_outputs()
        if not 0 <= cfg.output_index < len(outputs):
            raise ValueError(f"output_index {cfg.output_index} out of range: graph has {len(outputs)} outputs")
        self.input_name = graph_input.name
        self.input_shape = tuple(graph_input.shape)
        self.input_dtype = np.float16 if graph_input.type == "tensor(float16)" else np.float32
        self.output_name = outputs[cfg.output_index].name
        LOGGER.debug("ONNX session for %s on %s", self.model_path.name, ", ".join(self.providers_in_use))

    @property
    def providers_in_use(self) -> Tuple[str, ...]:
        return tuple(self.session.get_providers())

    def input_size(self) -> Tuple[int, int, int]:
        """
        (channels, height, width) declared by the graph; dynamic axes come back as 0.
        """

        dims = [d if isinstance(d, int) else 0 for d in self.input_shape[-3:]]
        while len(dims) < 3:
            dims.insert(0, 0)
        return dims[0], dims[1], dims[2]

    def infer(self, blob: np.ndarray) -> np.ndarray:
        feed = {self.input_name: blob.astype(self.input_dtype, copy=False)}
        (out,) = self.session.run([self.output_name], feed)
        return np.asarray(out, dtype=np.float32)
