"""Tests for OCR image preprocessing."""

import numpy as np
import pytest

from docfusion.ocr.preprocess import (
    binarize,
    denoise,
    deskew,
    detect_skew_angle,
    preprocess_for_ocr,
    to_gray,
)


def _make_noisy_image(height: int = 200, width: int = 300) -> np.ndarray:
    """Create a synthetic noisy grayscale image for testing."""
    rng = np.random.default_rng(42)
    base = np.zeros((height, width), dtype=np.uint8)
    base[50:150, 50:250] = 200
    noise = rng.integers(0, 50, size=(height, width), dtype=np.uint8)
    return np.clip(base.astype(np.int16) + noise.astype(np.int16), 0, 255).astype(
        np.uint8
    )


class TestToGray:
    """Tests for grayscale conversion."""

    def test_color_to_gray(self, sample_color_image: np.ndarray) -> None:
        gray = to_gray(sample_color_image)
        assert gray.ndim == 2
        assert gray.shape == sample_color_image.shape[:2]

    def test_gray_unchanged(self, sample_image: np.ndarray) -> None:
        assert to_gray(sample_image) is sample_image


class TestDeskew:
    """Tests for skew detection and correction."""

    def test_detect_skew_angle_no_lines(self) -> None:
        blank = np.zeros((100, 100), dtype=np.uint8)
        assert detect_skew_angle(blank) == 0.0

    def test_deskew_returns_same_shape(self) -> None:
        image = _make_noisy_image()
        assert deskew(image).shape == image.shape

    def test_deskew_no_correction_below_threshold(self) -> None:
        blank = np.zeros((100, 100), dtype=np.uint8)
        np.testing.assert_array_equal(deskew(blank, angle_threshold=0.5), blank)


class TestDenoise:
    """Tests for noise reduction."""

    def test_gaussian_reduces_variance(self) -> None:
        noisy = _make_noisy_image()
        denoised = denoise(noisy, method="gaussian")
        assert denoised.shape == noisy.shape
        assert denoised.var() <= noisy.var()

    def test_bilateral_preserves_shape(self) -> None:
        image = _make_noisy_image()
        assert denoise(image, method="bilateral").shape == image.shape

    def test_invalid_method_raises(self) -> None:
        with pytest.raises(ValueError, match="Unsupported denoise method"):
            denoise(_make_noisy_image(), method="magic")


class TestBinarize:
    """Tests for binarization."""

    @pytest.mark.parametrize("method", ["adaptive", "otsu"])
    def test_produces_binary(self, method: str) -> None:
        binary = binarize(_make_noisy_image(), method=method)
        assert set(np.unique(binary)).issubset({0, 255})

    def test_invalid_method_raises(self) -> None:
        with pytest.raises(ValueError, match="Unsupported binarize method"):
            binarize(_make_noisy_image(), method="magic")


class TestPreprocessForOCR:
    """Tests for the full cleanup chain."""

    def test_color_input_gives_binary_gray(
        self, sample_color_image: np.ndarray
    ) -> None:
        result = preprocess_for_ocr(sample_color_image)
        assert result.ndim == 2
        assert result.shape == sample_color_image.shape[:2]
        assert set(np.unique(result)).issubset({0, 255})
