from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator, Optional, Sequence, Tuple

import numpy as np


@dataclass(frozen=True)
class Box:
    """
    Axis-aligned box in center/size form.

    Coordinates are normalized fractions of whatever image the box refers to
    (network input before unletterboxing, original image afterwards).
    """

    x: float
    y: float
    w: float
    h: float

    @classmethod
    def from_xyxy(cls, x1: float, y1: float, x2: float, y2: float) -> "Box":
        return cls(x=(x1 + x2) / 2.0, y=(y1 + y2) / 2.0, w=x2 - x1, h=y2 - y1)

    def as_xyxy(self) -> Tuple[float, float, float, float]:
        return self.x - self.w / 2.0, self.y - self.h / 2.0, self.x + self.w / 2.0, self.y + self.h / 2.0

    @property
    def area(self) -> float:
        return max(0.0, self.w) * max(0.0, self.h)


@dataclass(frozen=True)
class Detection:
    """
    One decoded prediction.

    `class_probs` holds the objectness-weighted score of every class; scores that
    did not clear the decode threshold (or were suppressed by NMS) are 0.
    """

    box: Box
    objectness: float
    class_probs: Tuple[float, ...]

    def best_class(self) -> Optional[int]:
        if not self.class_probs:
            return None
        best = int(np.argmax(self.class_probs))
        return best if self.class_probs[best] > 0 else None

    @property
    def score(self) -> float:
        return max(self.class_probs) if self.class_probs else 0.0

    def classes_above(self, threshold: float) -> Tuple[int, ...]:
        return tuple(k for k, p in enumerate(self.class_probs) if p > threshold)


class DetectionSet(Sequence[Detection]):
    """
    Ordered detections for one inference call.

    `max_detections` is the bound the caller asked for, `count` the number
    actually produced.
    """

    def __init__(self, detections: Sequence[Detection] = (), max_detections: Optional[int] = None):
        items = tuple(detections)
        if max_detections is not None and len(items) > max_detections:
            raise ValueError(f"{len(items)} detections exceed max_detections={max_detections}")
        self._items = items
        self.max_detections = max_detections

    @property
    def count(self) -> int:
        return len(self._items)

    def __getitem__(self, index):  # type: ignore[override]
        return self._items[index]

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[Detection]:
        return iter(self._items)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, DetectionSet):
            return self._items == other._items
        return NotImplemented

    def __repr__(self) -> str:
        return f"DetectionSet(count={self.count}, max_detections={self.max_detections})"


class Image:
    """
    Owned pixel buffer: float32 `(channels, height, width)` in [0, 1].

    Planes are RGB. The buffer is released explicitly with `release()` (or by
    leaving a `with` block); using a released image raises.
    """

    def __init__(self, data: np.ndarray):
        arr = np.asarray(data, dtype=np.float32)
        if arr.ndim == 2:
            arr = arr[None, ...]
        if arr.ndim != 3:
            raise ValueError(f"Expected image data shaped (C, H, W), got {arr.shape}")
        self._data: Optional[np.ndarray] = arr

    @classmethod
    def blank(cls, width: int, height: int, channels: int = 3, fill: float = 0.5) -> "Image":
        return cls(np.full((channels, height, width), fill, dtype=np.float32))

    @classmethod
    def from_bgr(cls, image_bgr: np.ndarray) -> "Image":
        if image_bgr is None or not hasattr(image_bgr, "shape"):
            raise TypeError("image_bgr must be a NumPy array (BGR).")
        if image_bgr.ndim != 3 or image_bgr.shape[2] != 3:
            raise ValueError(f"Expected image shape (H, W, 3), got {getattr(image_bgr, 'shape', None)}")
        # BGR -> RGB, normalize, HWC -> CHW
        rgb = image_bgr[:, :, ::-1].astype(np.float32) / 255.0
        return cls(np.ascontiguousarray(np.transpose(rgb, (2, 0, 1))))

    def to_bgr(self) -> np.ndarray:
        data = self.data
        if data.shape[0] == 1:
            data = np.repeat(data, 3, axis=0)
        hwc = np.transpose(data[:3], (1, 2, 0))[:, :, ::-1]
        return np.ascontiguousarray(np.clip(hwc * 255.0 + 0.5, 0, 255).astype(np.uint8))

    @property
    def data(self) -> np.ndarray:
        if self._data is None:
            raise RuntimeError("Image buffer has been released.")
        return self._data

    @property
    def channels(self) -> int:
        return int(self.data.shape[0])

    @property
    def height(self) -> int:
        return int(self.data.shape[1])

    @property
    def width(self) -> int:
        return int(self.data.shape[2])

    @property
    def released(self) -> bool:
        return self._data is None

    def release(self) -> None:
        self._data = None

    def __enter__(self) -> "Image":
        return self

    def __exit__(self, *exc) -> None:
        self.release()

    def __repr__(self) -> str:
        if self._data is None:
            return "Image(released)"
        return f"Image(width={self.width}, height={self.height}, channels={self.channels})"


@dataclass(frozen=True)
class RawOutput:
    """
    Per-cell network predictions for one image.

    `cells` is shaped (N, 5 + C): [x, y, w, h, objectness, p_0 ... p_{C-1}], box
    center/size normalized to the network input.
    """

    cells: np.ndarray

    def __post_init__(self) -> None:
        if self.cells.ndim != 2 or self.cells.shape[1] < 5:
            raise ValueError(f"RawOutput cells must be shaped (N, 5 + C), got {self.cells.shape}")

    @property
    def num_cells(self) -> int:
        return int(self.cells.shape[0])

    @property
    def num_classes(self) -> int:
        return int(self.cells.shape[1] - 5)

    @classmethod
    def from_array(
        cls,
        preds: np.ndarray,
        *,
        num_classes: int,
        has_objectness: Optional[bool] = None,
        normalized: bool = True,
        net_size: Tuple[int, int] = (0, 0),
    ) -> "RawOutput":
        """
        Normalize the usual exported YOLO layouts to (N, 5 + C).

        Supported (per image, optional leading batch axis of 1):
        - (N, 5 + C) / (5 + C, N): [cx, cy, w, h, obj, class_scores...]
        - (N, 4 + C) / (4 + C, N): anchors layout without objectness (objectness = 1)

        Args:
            num_classes: expected class count, used to pick the orientation
            has_objectness: force interpretation; None infers it from the width
            normalized: False when the exported boxes are in network pixels
            net_size: (width, height) of the network input, needed when not normalized
        """

        p = np.asarray(preds, dtype=np.float32)
        if p.ndim == 3:
            if p.shape[0] != 1:
                raise ValueError(f"Batch > 1 is not supported (got shape {p.shape}). Pass one image at a time.")
            p = p[0]
        if p.ndim != 2:
            raise ValueError(f"Unsupported YOLO output shape: {p.shape}")

        widths = (num_classes + 5, num_classes + 4)
        if p.shape[1] not in widths and p.shape[0] in widths:
            p = p.T
        if p.shape[1] not in widths:
            raise ValueError(f"Output shape {p.shape} does not match {num_classes} classes")

        with_obj = p.shape[1] == num_classes + 5 if has_objectness is None else has_objectness
        if with_obj and p.shape[1] != num_classes + 5:
            raise ValueError(f"Expected objectness + class scores, got shape {p.shape}.")
        if not with_obj:
            if p.shape[1] != num_classes + 4:
                raise ValueError(f"Expected class scores without objectness, got shape {p.shape}.")
            p = np.concatenate([p[:, :4], np.ones((p.shape[0], 1), dtype=np.float32), p[:, 4:]], axis=1)

        if not normalized:
            net_w, net_h = net_size
            if net_w <= 0 or net_h <= 0:
                raise ValueError("net_size is required to normalize pixel boxes")
            p = p.copy()
            p[:, [0, 2]] /= float(net_w)
            p[:, [1, 3]] /= float(net_h)

        return cls(cells=np.ascontiguousarray(p))
