from __future__ import annotations

from dataclasses import replace
from typing import Sequence

import numpy as np

from .types import Box, Detection, DetectionSet


def iou(a: Box, b: Box) -> float:
    """
    Intersection over union of two boxes; 0 when either box has no area.
    """

    if a.area <= 0 or b.area <= 0:
        return 0.0
    ax1, ay1, ax2, ay2 = a.as_xyxy()
    bx1, by1, bx2, by2 = b.as_xyxy()
    w = max(0.0, min(ax2, bx2) - max(ax1, bx1))
    h = max(0.0, min(ay2, by2) - max(ay1, by1))
    inter = w * h
    union = a.area + b.area - inter
    if union <= 0:
        return 0.0
    return inter / union


def iou_matrix(boxes: Sequence[Box]) -> np.ndarray:
    """
    Pairwise IoU (N, N) for boxes in center/size form.
    """

    if not boxes:
        return np.zeros((0, 0), dtype=np.float64)
    xywh = np.array([(b.x, b.y, b.w, b.h) for b in boxes], dtype=np.float64)
    x1 = xywh[:, 0] - xywh[:, 2] / 2
    y1 = xywh[:, 1] - xywh[:, 3] / 2
    x2 = xywh[:, 0] + xywh[:, 2] / 2
    y2 = xywh[:, 1] + xywh[:, 3] / 2
    areas = np.maximum(xywh[:, 2], 0.0) * np.maximum(xywh[:, 3], 0.0)

    w = np.maximum(0.0, np.minimum(x2[:, None], x2[None, :]) - np.maximum(x1[:, None], x1[None, :]))
    h = np.maximum(0.0, np.minimum(y2[:, None], y2[None, :]) - np.maximum(y1[:, None], y1[None, :]))
    inter = w * h
    union = areas[:, None] + areas[None, :] - inter

    out = np.zeros_like(inter)
    valid = (areas[:, None] > 0) & (areas[None, :] > 0) & (union > 0)
    np.divide(inter, union, out=out, where=valid)
    return out


def nms(detections: Sequence[Detection], num_classes: int, iou_threshold: float) -> DetectionSet:
    """
    Per-class non-maximum suppression.

    For every class, candidates with a positive score are walked in descending
    score order (ties keep decode order); each kept box suppresses later boxes
    whose IoU with it exceeds `iou_threshold`. Suppression zeroes that class's
    score; a detection is kept while any class score survives.

    `iou_threshold <= 0` disables suppression.
    """

    max_detections = getattr(detections, "max_detections", None)
    dets = list(detections)
    if iou_threshold <= 0 or len(dets) < 2:
        return DetectionSet(dets, max_detections=max_detections)

    scores = np.array([d.class_probs[:num_classes] for d in dets], dtype=np.float64).reshape(len(dets), num_classes)
    ious = iou_matrix([d.box for d in dets])
    kept = scores > 0

    for k in range(num_classes):
        candidates = np.flatnonzero(scores[:, k] > 0)
        if candidates.size < 2:
            continue
        order = candidates[np.argsort(-scores[candidates, k], kind="stable")]
        for pos, i in enumerate(order):
            if not kept[i, k]:
                continue
            later = order[pos + 1 :]
            kept[later[ious[i, later] > iou_threshold], k] = False

    survivors = []
    for i, det in enumerate(dets):
        if not kept[i].any():
            continue
        if np.array_equal(kept[i], scores[i] > 0):
            survivors.append(det)
            continue
        probs = tuple(p if k >= num_classes or kept[i, k] else 0.0 for k, p in enumerate(det.class_probs))
        survivors.append(replace(det, class_probs=probs))

    return DetectionSet(survivors, max_detections=max_detections)
