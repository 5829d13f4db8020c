from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Union

import numpy as np

PathLike = Union[str, Path]

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class TorchScriptBackendConfig:
    """
    - device: torch device string; "cuda" falls back to CPU when no GPU is visible
    - half: run in float16 (CUDA only)
    - output_index: which output to decode when the module returns several
    """

    device: str = "cpu"
    half: bool = False
    output_index: int = 0


class TorchScriptBackend:
    """
    Exported detector loaded with `torch.jit.load`.
    """

    def __init__(self, model_path: PathLike, cfg: TorchScriptBackendConfig = TorchScriptBackendConfig()):
        try:
            import torch  # type: ignore
        except ImportError as e:  # pragma: no cover
            raise ImportError("torch is required for the TorchScript backend. Install with `pip install torch`.") from e

        self._torch = torch
        self.model_path = Path(model_path)
        if not self.model_path.exists():
            raise FileNotFoundError(f"TorchScript model not found: {self.model_path}")

        device = cfg.device
        if device.startswith("cuda") and not torch.cuda.is_available():
            LOGGER.warning("CUDA requested but not available, running %s on CPU", self.model_path.name)
            device = "cpu"
        self.device = torch.device(device)
        # float16 on CPU is unsupported for most detector ops
        self.half = cfg.half and self.device.type == "cuda"
        self.output_index = cfg.output_index

        module = torch.jit.load(str(self.model_path), map_location=self.device)
        if self.half:
            module = module.half()
        module.eval()
        self.module = module

    def infer(self, blob: np.ndarray) -> np.ndarray:
        torch = self._torch
        x = torch.from_numpy(np.ascontiguousarray(blob)).to(self.device)
        x = x.half() if self.half else x.float()

        with torch.inference_mode():
            out = self.module(x)

        if isinstance(out, (tuple, list)):
            if not 0 <= self.output_index < len(out):
                raise RuntimeError(f"output_index {self.output_index} out of range for {len(out)} model outputs")
            out = out[self.output_index]
        return out.detach().float().cpu().numpy()
