"""
Tests for image and I/O utilities.
"""

import numpy as np
import pytest
import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))


class TestImages:
    """Test image helpers."""

    @pytest.fixture
    def sample_image(self):
        img = np.full((120, 160, 3), 255, dtype=np.uint8)
        img[30:60, 40:100] = (20, 20, 20)
        return img

    def test_to_grayscale(self, sample_image):
        from paperscan.images import to_grayscale

        gray = to_grayscale(sample_image)

        assert gray.shape == (120, 160)
        assert to_grayscale(gray) is gray

    def test_content_bounding_rect(self, sample_image):
        from paperscan.images import content_bounding_rect

        assert content_bounding_rect(sample_image) == (40, 30, 60, 30)

    def test_content_bounding_rect_uses_weighted_gray(self):
        """A pale yellow tint is background under BGR weighting even though its channel mean is darker."""
        from paperscan.images import content_bounding_rect, to_grayscale

        img = np.full((40, 40, 3), 255, dtype=np.uint8)
        img[:, :20] = (200, 255, 255)
        img[25:30, 25:35] = (0, 0, 0)

        assert to_grayscale(img)[0, 0] >= 248
        assert content_bounding_rect(img) == (25, 25, 10, 5)

    def test_content_bounding_rect_blank(self):
        from paperscan.images import content_bounding_rect

        assert content_bounding_rect(np.full((10, 10, 3), 250, dtype=np.uint8)) is None
        assert content_bounding_rect(np.zeros((0, 5, 3), dtype=np.uint8)) is None

    def test_crop_rows_and_box_clamped(self, sample_image):
        from paperscan.images import crop_rows, crop_box

        assert crop_rows(sample_image, 100, 500).shape == (20, 160, 3)
        assert crop_box(sample_image, 150, -10, 50, 30).shape == (20, 10, 3)

    def test_encode_decode(self, sample_image):
        from paperscan.images import encode_jpeg, encode_png, decode_image

        assert decode_image(encode_jpeg(sample_image)).shape == sample_image.shape
        assert np.array_equal(decode_image(encode_png(sample_image)), sample_image)

    def test_decode_invalid(self):
        from paperscan.images import decode_image

        with pytest.raises(ValueError):
            decode_image(b"not an image")
        with pytest.raises(ValueError):
            decode_image(b"")

    def test_draw_debug_image(self, sample_image):
        from paperscan.images import draw_debug_image

        debug = draw_debug_image(sample_image, [(10, 50), (60, 110)], labels=["Stem", "Question"])

        assert debug.shape == sample_image.shape
        assert not np.array_equal(debug, sample_image)
        assert sample_image[10, 0].tolist() == [255, 255, 255]


class TestIO:
    """Test file helpers."""

    def test_save_and_load_image(self, tmp_path):
        from paperscan.io import save_image_atomic, load_image

        img = np.full((40, 60, 3), 128, dtype=np.uint8)
        path = save_image_atomic(img, tmp_path / "nested" / "crop.png")

        assert np.array_equal(load_image(path), img)
        assert [p.name for p in path.parent.iterdir()] == ["crop.png"]

    def test_load_missing_image(self, tmp_path):
        from paperscan.io import load_image

        with pytest.raises(FileNotFoundError):
            load_image(tmp_path / "missing.jpg")

    def test_load_undecodable_image(self, tmp_path):
        from paperscan.io import load_image

        path = tmp_path / "broken.jpg"
        path.write_bytes(b"garbage")

        with pytest.raises(ValueError):
            load_image(path)

    def test_atomic_write_replaces(self, tmp_path):
        from paperscan.io import write_bytes_atomic

        path = tmp_path / "data.bin"
        write_bytes_atomic(b"old", path)
        write_bytes_atomic(b"new", path)

        assert path.read_bytes() == b"new"
        assert list(tmp_path.iterdir()) == [path]

    def test_remove_files(self, tmp_path):
        from paperscan.io import remove_files

        existing = tmp_path / "a.jpg"
        existing.write_bytes(b"x")

        remove_files([existing, tmp_path / "never-written.jpg"])

        assert not existing.exists()

    def test_json_round_trip(self, tmp_path):
        from paperscan.io import save_json, load_json
        from paperscan.items import ItemKind, Question

        question = Question(index=np.int64(3), kind=ItemKind.QUESTION, text="填空：3 + 4 = ____")
        path = save_json({"question": question, "kind": ItemKind.STEM}, tmp_path / "out.json")

        data = load_json(path)

        assert data["kind"] == "Stem"
        assert data["question"]["index"] == 3
        assert data["question"]["text"] == "填空：3 + 4 = ____"
        assert "填空" in path.read_text(encoding="utf-8")
