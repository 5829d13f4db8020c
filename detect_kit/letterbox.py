from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple

import cv2
import numpy as np

from .types import Box, Image

LETTERBOX_FILL = 0.5


def fit_size(w: int, h: int, target_w: int, target_h: int) -> Tuple[float, int, int]:
    """
    Scale (never above 1) and the integer size `w`x`h` is resized to inside the target.
    """

    scale = min(target_w / w, target_h / h, 1.0)
    resized_w = min(target_w, max(1, int(round(w * scale))))
    resized_h = min(target_h, max(1, int(round(h * scale))))
    return scale, resized_w, resized_h


def letterbox(image: Image, target_w: int, target_h: int, fill: float = LETTERBOX_FILL) -> Tuple[Image, float, int, int]:
    """
    Fit `image` inside (target_w, target_h) keeping aspect ratio, then pad.

    The scale never exceeds 1. The resized image is centered on a canvas filled
    with `fill`.

    Returns:
        padded: new image of size (target_w, target_h)
        scale: resize factor applied to both axes
        pad_x, pad_y: left/top offset of the resized image inside the canvas
    """

    if target_w <= 0 or target_h <= 0:
        return Image(image.data.copy()), 1.0, 0, 0

    w, h = image.width, image.height
    scale, resized_w, resized_h = fit_size(w, h, target_w, target_h)

    hwc = np.transpose(image.data, (1, 2, 0))
    if (w, h) != (resized_w, resized_h):
        hwc = cv2.resize(hwc, (resized_w, resized_h), interpolation=cv2.INTER_LINEAR)
        if hwc.ndim == 2:
            hwc = hwc[:, :, None]

    pad_x = (target_w - resized_w) // 2
    pad_y = (target_h - resized_h) // 2
    canvas = np.full((image.channels, target_h, target_w), fill, dtype=np.float32)
    canvas[:, pad_y : pad_y + resized_h, pad_x : pad_x + resized_w] = np.transpose(hwc, (2, 0, 1))
    return Image(canvas), float(scale), int(pad_x), int(pad_y)


def letterbox_box(
    box: Box,
    scale: float,
    pad_x: float,
    pad_y: float,
    orig_w: int,
    orig_h: int,
    net_w: int,
    net_h: int,
    scale_y: Optional[float] = None,
) -> Box:
    """
    Map a box normalized to the original image into letterboxed-normalized coordinates.

    `scale_y` overrides the vertical factor when the two axes were rounded apart.
    """

    if net_w <= 0 or net_h <= 0:
        return box
    sx = scale
    sy = scale if scale_y is None else scale_y
    return Box(
        x=(box.x * orig_w * sx + pad_x) / net_w,
        y=(box.y * orig_h * sy + pad_y) / net_h,
        w=box.w * orig_w * sx / net_w,
        h=box.h * orig_h * sy / net_h,
    )


def unletterbox(
    box: Box,
    scale: float,
    pad_x: float,
    pad_y: float,
    orig_w: int,
    orig_h: int,
    net_w: int,
    net_h: int,
    scale_y: Optional[float] = None,
) -> Box:
    """
    Invert `letterbox` for a box normalized to the network input.

    Subtract padding, divide by scale, clamp to the original image, re-normalize.
    """

    if net_w <= 0 or net_h <= 0:
        return box
    sx = scale
    sy = scale if scale_y is None else scale_y

    x1, y1, x2, y2 = box.as_xyxy()
    x1 = (x1 * net_w - pad_x) / sx
    x2 = (x2 * net_w - pad_x) / sx
    y1 = (y1 * net_h - pad_y) / sy
    y2 = (y2 * net_h - pad_y) / sy

    x1 = min(max(x1, 0.0), float(orig_w))
    x2 = min(max(x2, 0.0), float(orig_w))
    y1 = min(max(y1, 0.0), float(orig_h))
    y2 = min(max(y2, 0.0), float(orig_h))

    return Box.from_xyxy(x1 / orig_w, y1 / orig_h, x2 / orig_w, y2 / orig_h)


@dataclass(frozen=True)
class LetterboxGeometry:
    """
    Everything needed to map boxes of one letterboxed frame back to its source.

    `resized_w`/`resized_h` are the integer size the frame was pasted at; when
    set, each axis uses its own effective ratio instead of the nominal `scale`.
    """

    scale: float
    pad_x: int
    pad_y: int
    orig_w: int
    orig_h: int
    net_w: int
    net_h: int
    resized_w: int = 0
    resized_h: int = 0

    @classmethod
    def identity(cls, orig_w: int, orig_h: int) -> "LetterboxGeometry":
        return cls(scale=1.0, pad_x=0, pad_y=0, orig_w=orig_w, orig_h=orig_h, net_w=0, net_h=0)

    @property
    def scale_x(self) -> float:
        return self.resized_w / self.orig_w if self.resized_w else self.scale

    @property
    def scale_y(self) -> float:
        return self.resized_h / self.orig_h if self.resized_h else self.scale

    def forward(self, box: Box) -> Box:
        return letterbox_box(
            box, self.scale_x, self.pad_x, self.pad_y, self.orig_w, self.orig_h, self.net_w, self.net_h, self.scale_y
        )

    def unletterbox(self, box: Box) -> Box:
        return unletterbox(
            box, self.scale_x, self.pad_x, self.pad_y, self.orig_w, self.orig_h, self.net_w, self.net_h, self.scale_y
        )


def letterbox_with_geometry(image: Image, target_w: int, target_h: int) -> Tuple[Image, LetterboxGeometry]:
    padded, scale, pad_x, pad_y = letterbox(image, target_w, target_h)
    if target_w <= 0 or target_h <= 0:
        return padded, LetterboxGeometry.identity(image.width, image.height)
    _, resized_w, resized_h = fit_size(image.width, image.height, target_w, target_h)
    geometry = LetterboxGeometry(
        scale=scale,
        pad_x=pad_x,
        pad_y=pad_y,
        orig_w=image.width,
        orig_h=image.height,
        net_w=target_w,
        net_h=target_h,
        resized_w=resized_w,
        resized_h=resized_h,
    )
    return padded, geometry
