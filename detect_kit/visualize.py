from __future__ import annotations

from functools import lru_cache
from typing import Iterable, Optional, Sequence, Tuple

import cv2
import numpy as np

from .types import Detection

UNLABELED_COLOR = (0, 255, 255)
TEXT_COLOR = (255, 255, 255)


@lru_cache(maxsize=256)
def color_for_class(class_id: Optional[int]) -> Tuple[int, int, int]:
    """
    Deterministic BGR color for a class id.

    Hues step by the golden ratio so neighbouring ids stay far apart on the wheel.
    """

    if class_id is None or class_id < 0:
        return UNLABELED_COLOR
    hue = int(((class_id * 0.618033988749895) % 1.0) * 180)
    hsv = np.array([[[hue, 220, 255]]], dtype=np.uint8)
    b, g, r = cv2.cvtColor(hsv, cv2.COLOR_HSV2BGR)[0, 0]
    return int(b), int(g), int(r)


def label_for(det: Detection, class_names: Sequence[str], threshold: float, show_score: bool = True) -> str:
    parts = []
    for k in det.classes_above(threshold):
        name = class_names[k] if k < len(class_names) else str(k)
        parts.append(f"{name} {det.class_probs[k]:.2f}" if show_score else name)
    return ", ".join(parts)


def _to_pixels(det: Detection, w: int, h: int) -> Tuple[int, int, int, int]:
    x1, y1, x2, y2 = det.box.as_xyxy()
    xs = np.clip(np.rint([x1 * w, x2 * w]), 0, w - 1).astype(int)
    ys = np.clip(np.rint([y1 * h, y2 * h]), 0, h - 1).astype(int)
    return int(xs[0]), int(ys[0]), int(xs[1]), int(ys[1])


def draw_detections(
    image_bgr: np.ndarray,
    detections: Iterable[Detection],
    *,
    class_names: Sequence[str] = (),
    threshold: float = 0.0,
    show_score: bool = True,
    box_thickness: Optional[int] = None,
    font_scale: float = 0.5,
) -> np.ndarray:
    """
    Draw boxes + labels on a BGR image and return an annotated copy.

    Every class scoring above `threshold` is named in the label; the box takes
    the color of the best class. Detections with no class above the threshold
    are not drawn. Box coordinates are normalized to the image size.
    """

    if not isinstance(image_bgr, np.ndarray):
        raise TypeError("image_bgr must be a NumPy array (BGR).")
    if image_bgr.ndim != 3 or image_bgr.shape[2] != 3:
        raise ValueError(f"Expected image shape (H, W, 3), got {image_bgr.shape}")

    out = image_bgr.copy()
    h, w = out.shape[:2]
    # line width scales with the image height
    thickness = box_thickness or max(1, int(h * 0.006))
    font = cv2.FONT_HERSHEY_SIMPLEX

    for det in detections:
        label = label_for(det, class_names, threshold, show_score=show_score)
        if not label:
            continue

        x1, y1, x2, y2 = _to_pixels(det, w, h)
        color = color_for_class(det.best_class())
        cv2.rectangle(out, (x1, y1), (x2, y2), color, thickness)

        (tw, th), base = cv2.getTextSize(label, font, font_scale, 1)
        # label sits on top of the box, or just inside it at the image top
        top = y1 - th - base if y1 - th - base >= 0 else y1
        bottom = min(top + th + base, h - 1)
        cv2.rectangle(out, (x1, top), (min(x1 + tw, w - 1), bottom), color, cv2.FILLED)
        cv2.putText(out, label, (x1, bottom - base), font, font_scale, TEXT_COLOR, 1, cv2.LINE_AA)

    return out
