from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional

import numpy as np

from .hierarchy import Hierarchy
from .letterbox import LetterboxGeometry
from .nms import nms
from .types import Box, Detection, DetectionSet, RawOutput

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class DecodeConfig:
    threshold: float = 0.5
    hier_threshold: float = 0.5
    max_detections: Optional[int] = 300

    def __post_init__(self) -> None:
        if not 0.0 <= self.threshold <= 1.0:
            raise ValueError("threshold must be in [0, 1]")
        if not 0.0 <= self.hier_threshold <= 1.0:
            raise ValueError("hier_threshold must be in [0, 1]")
        if self.max_detections is not None and self.max_detections < 0:
            raise ValueError("max_detections must be >= 0")


def class_scores(raw_output: RawOutput, threshold: float, num_classes: int) -> np.ndarray:
    """
    Flat per-class scores (N, C): objectness * class probability, zeroed at or below threshold.
    """

    cells = raw_output.cells
    if raw_output.num_classes < num_classes:
        raise ValueError(f"Raw output carries {raw_output.num_classes} classes, expected {num_classes}")
    objectness = cells[:, 4:5]
    scores = objectness * cells[:, 5 : 5 + num_classes]
    return np.where(scores > threshold, scores, 0.0).astype(np.float32)


def hierarchy_scores(raw_output: RawOutput, threshold: float, hier_threshold: float, hierarchy: Hierarchy) -> np.ndarray:
    """
    One class per cell: the most specific class clearing `hier_threshold`.
    """

    cells = raw_output.cells
    n = hierarchy.num_classes
    if raw_output.num_classes < n:
        raise ValueError(f"Raw output carries {raw_output.num_classes} classes, hierarchy has {n}")
    scores = np.zeros((cells.shape[0], n), dtype=np.float32)
    for i, cell in enumerate(cells):
        objectness = float(cell[4])
        if objectness <= threshold:
            continue
        probs = hierarchy.cumulative(cell[5 : 5 + n])
        cls_id, _ = hierarchy.top_prediction(cell[5 : 5 + n], hier_threshold)
        score = objectness * probs[cls_id]
        if score > threshold:
            scores[i, cls_id] = score
    return scores


def decode(
    raw_output: RawOutput,
    threshold: float,
    hier_threshold: float,
    num_classes: int,
    *,
    geometry: Optional[LetterboxGeometry] = None,
    hierarchy: Optional[Hierarchy] = None,
    max_detections: Optional[int] = None,
) -> DetectionSet:
    """
    Turn raw cell predictions into detections.

    Cells with no class score above `threshold` are dropped. Boxes come out of
    the network letterboxed; with `geometry` they are mapped back to the
    original image. At most `max_detections` are kept, in cell order.
    """

    if hierarchy is not None:
        scores = hierarchy_scores(raw_output, threshold, hier_threshold, hierarchy)
    else:
        scores = class_scores(raw_output, threshold, num_classes)

    keep = np.flatnonzero(scores.max(axis=1, initial=0.0) > 0)
    if max_detections is not None and keep.size > max_detections:
        LOGGER.debug("Dropping %d detections over max_detections=%d", keep.size - max_detections, max_detections)
        keep = keep[:max_detections]

    cells = raw_output.cells
    detections: List[Detection] = []
    for i in keep:
        x, y, w, h, objectness = (float(v) for v in cells[i, :5])
        box = Box(x=x, y=y, w=w, h=h)
        if geometry is not None:
            box = geometry.unletterbox(box)
        detections.append(
            Detection(
                box=box,
                objectness=objectness,
                class_probs=tuple(float(s) for s in scores[i]),
            )
        )

    return DetectionSet(detections, max_detections=max_detections)


class Postprocessor:
    """
    decode + NMS with a fixed configuration, for callers that process many frames.
    """

    def __init__(self, cfg: DecodeConfig, num_classes: int, nms_iou_threshold: float = 0.45, hierarchy: Optional[Hierarchy] = None):
        self.cfg = cfg
        self.num_classes = num_classes
        self.nms_iou_threshold = nms_iou_threshold
        self.hierarchy = hierarchy

    def decode(self, raw_output: RawOutput, geometry: Optional[LetterboxGeometry] = None) -> DetectionSet:
        return decode(
            raw_output,
            self.cfg.threshold,
            self.cfg.hier_threshold,
            self.num_classes,
            geometry=geometry,
            hierarchy=self.hierarchy,
            max_detections=self.cfg.max_detections,
        )

    def suppress(self, detections: DetectionSet) -> DetectionSet:
        return nms(detections, self.num_classes, self.nms_iou_threshold)

    def process(self, raw_output: RawOutput, geometry: Optional[LetterboxGeometry] = None) -> DetectionSet:
        return self.suppress(self.decode(raw_output, geometry))
