import unittest

import numpy as np

from detect_kit.letterbox import LetterboxGeometry, letterbox, letterbox_with_geometry, unletterbox
from detect_kit.types import Box, Image


def _image(width: int, height: int) -> Image:
    rng = np.random.default_rng(0)
    return Image(rng.random((3, height, width), dtype=np.float32))


class TestLetterbox(unittest.TestCase):
    def test_small_image_is_padded_not_upscaled(self) -> None:
        img = _image(200, 100)
        padded, scale, pad_x, pad_y = letterbox(img, 416, 416)
        self.assertEqual(scale, 1.0)
        self.assertEqual((pad_x, pad_y), (108, 158))
        self.assertEqual((padded.width, padded.height, padded.channels), (416, 416, 3))
        self.assertTrue(np.allclose(padded.data[:, 158:258, 108:308], img.data))
        self.assertTrue(np.all(padded.data[:, :158, :] == 0.5))

    def test_large_image_is_scaled_to_fit(self) -> None:
        img = _image(800, 400)
        padded, scale, pad_x, pad_y = letterbox(img, 416, 416)
        self.assertAlmostEqual(scale, 0.52)
        self.assertEqual((pad_x, pad_y), (0, 104))
        self.assertEqual((padded.width, padded.height), (416, 416))
        self.assertTrue(np.all(padded.data[:, :104, :] == 0.5))
        self.assertTrue(np.all(padded.data[:, 312:, :] == 0.5))

    def test_unset_target_is_identity(self) -> None:
        img = _image(64, 48)
        padded, scale, pad_x, pad_y = letterbox(img, 0, 0)
        self.assertEqual((scale, pad_x, pad_y), (1.0, 0, 0))
        self.assertTrue(np.array_equal(padded.data, img.data))

        _, geometry = letterbox_with_geometry(img, 0, 0)
        box = Box(0.3, 0.4, 0.2, 0.1)
        self.assertEqual(geometry.unletterbox(box), box)
        self.assertEqual(unletterbox(box, 1.0, 0, 0, 64, 48, 0, 0), box)

    def test_round_trip_inside_visible_region(self) -> None:
        img = _image(800, 400)
        _, geometry = letterbox_with_geometry(img, 416, 416)
        boxes = [
            Box(0.5, 0.5, 0.2, 0.3),
            Box(0.1, 0.2, 0.05, 0.1),
            Box(0.85, 0.75, 0.2, 0.4),
            Box(0.25, 0.5, 0.5, 0.99),
        ]
        for box in boxes:
            back = geometry.unletterbox(geometry.forward(box))
            for a, b in zip((back.x, back.y, back.w, back.h), (box.x, box.y, box.w, box.h)):
                self.assertAlmostEqual(a, b, places=9)

    def test_round_trip_with_horizontal_padding(self) -> None:
        geometry = LetterboxGeometry(scale=0.5, pad_x=48, pad_y=0, orig_w=640, orig_h=832, net_w=416, net_h=416)
        box = Box(0.4, 0.6, 0.3, 0.2)
        back = geometry.unletterbox(geometry.forward(box))
        self.assertAlmostEqual(back.x, box.x, places=9)
        self.assertAlmostEqual(back.y, box.y, places=9)
        self.assertAlmostEqual(back.w, box.w, places=9)
        self.assertAlmostEqual(back.h, box.h, places=9)

    def test_rounded_resize_is_undone_exactly(self) -> None:
        # 481 * 0.65 = 312.65 is pasted as 313 rows
        _, geometry = letterbox_with_geometry(_image(640, 481), 416, 416)
        self.assertEqual((geometry.resized_w, geometry.resized_h, geometry.pad_y), (416, 313, 51))
        self.assertAlmostEqual(geometry.scale_y, 313 / 481)

        box = Box.from_xyxy(0.25, (51 + 100) / 416, 0.75, (51 + 213) / 416)
        back = geometry.unletterbox(box)
        self.assertAlmostEqual(back.x, 0.5, places=9)
        self.assertAlmostEqual(back.y, 0.5, places=9)
        self.assertAlmostEqual(back.h, 113 / 313, places=9)

    def test_box_in_padding_is_clamped(self) -> None:
        geometry = LetterboxGeometry(scale=0.52, pad_x=0, pad_y=104, orig_w=800, orig_h=400, net_w=416, net_h=416)
        # Entirely inside the top padding band.
        back = geometry.unletterbox(Box(0.5, 0.1, 0.2, 0.1))
        self.assertEqual(back.y, 0.0)
        self.assertEqual(back.h, 0.0)
        # Straddling the bottom edge.
        back = geometry.unletterbox(Box(0.5, 0.75, 0.2, 0.1))
        _, _, _, y2 = back.as_xyxy()
        self.assertAlmostEqual(y2, 1.0, places=9)
        self.assertLessEqual(back.y + back.h / 2, 1.0 + 1e-12)


class TestImage(unittest.TestCase):
    def test_bgr_round_trip(self) -> None:
        bgr = np.arange(4 * 5 * 3, dtype=np.uint8).reshape(4, 5, 3)
        img = Image.from_bgr(bgr)
        self.assertEqual((img.width, img.height, img.channels), (5, 4, 3))
        # planes are RGB
        self.assertAlmostEqual(float(img.data[0, 0, 0]), bgr[0, 0, 2] / 255.0, places=6)
        self.assertTrue(np.array_equal(img.to_bgr(), bgr))

    def test_release(self) -> None:
        with Image.blank(8, 8) as img:
            self.assertFalse(img.released)
        self.assertTrue(img.released)
        with self.assertRaises(RuntimeError):
            _ = img.data

    def test_rejects_non_bgr(self) -> None:
        with self.assertRaises(ValueError):
            Image.from_bgr(np.zeros((10, 10), dtype=np.uint8))


if __name__ == "__main__":
    unittest.main()
