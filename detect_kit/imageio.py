from __future__ import annotations

from pathlib import Path
from typing import Union

import cv2
import numpy as np

PathLike = Union[str, Path]

DEFAULT_EXTENSION = ".jpg"


def read_image(path: PathLike) -> np.ndarray:
    img = cv2.imread(str(path))
    if img is None:
        raise FileNotFoundError(f"Could not read image at path: {path}")
    return img


def output_path_for(path: PathLike) -> Path:
    """
    Output names without an extension are written as JPEG.
    """

    p = Path(path)
    return p if p.suffix else p.with_name(p.name + DEFAULT_EXTENSION)


def write_image(image_bgr: np.ndarray, path: PathLike) -> Path:
    out = output_path_for(path)
    if out.parent and not out.parent.exists():
        out.parent.mkdir(parents=True, exist_ok=True)
    ok = cv2.imwrite(str(out), image_bgr)
    if not ok:
        raise RuntimeError(f"Failed to write output image: {out}")
    return out
