"""Image cleanup applied to scans before OCR.

Grayscale conversion, noise reduction, skew correction, and binarization
with OpenCV to improve Tesseract accuracy on degraded scans.
"""

import cv2
import numpy as np

from docfusion.utils.logger import get_logger

logger = get_logger(__name__)


def to_gray(image: np.ndarray) -> np.ndarray:
    """Convert an image to grayscale if it has color channels.

    Args:
        image: Input image (BGR, BGRA, or grayscale).

    Returns:
        Grayscale image.
    """
    if image.ndim == 3 and image.shape[2] == 4:
        return cv2.cvtColor(image, cv2.COLOR_BGRA2GRAY)
    if image.ndim == 3:
        return cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)
    return image


def denoise(image: np.ndarray, method: str = "bilateral") -> np.ndarray:
    """Apply noise reduction using the specified method.

    Args:
        image: Input image as a numpy array.
        method: Denoising method, either ``"gaussian"`` or ``"bilateral"``.

    Returns:
        Denoised image.

    Raises:
        ValueError: If an unsupported method is specified.
    """
    if method == "gaussian":
        return cv2.GaussianBlur(image, (5, 5), 0)
    if method == "bilateral":
        return cv2.bilateralFilter(image, 9, 75, 75)
    raise ValueError(f"Unsupported denoise method: {method}")


def binarize(image: np.ndarray, method: str = "adaptive") -> np.ndarray:
    """Binarize a grayscale image.

    Args:
        image: Grayscale input image.
        method: ``"adaptive"`` (Gaussian adaptive threshold) or ``"otsu"``.

    Returns:
        Binary image with pixel values 0 or 255.

    Raises:
        ValueError: If an unsupported method is specified.
    """
    if method == "adaptive":
        return cv2.adaptiveThreshold(
            image, 255, cv2.ADAPTIVE_THRESH_GAUSSIAN_C, cv2.THRESH_BINARY, 11, 2
        )
    if method == "otsu":
        _, binary = cv2.threshold(image, 0, 255, cv2.THRESH_BINARY + cv2.THRESH_OTSU)
        return binary
    raise ValueError(f"Unsupported binarize method: {method}")


def detect_skew_angle(gray: np.ndarray) -> float:
    """Estimate the skew angle of a grayscale page from its dominant lines.

    Args:
        gray: Grayscale input image.

    Returns:
        Median line angle in degrees, 0.0 when no lines are found.
    """
    edges = cv2.Canny(gray, 50, 150, apertureSize=3)
    lines = cv2.HoughLinesP(
        edges, 1, np.pi / 180, 100, minLineLength=100, maxLineGap=10
    )
    if lines is None:
        return 0.0
    angles = [
        np.arctan2(y2 - y1, x2 - x1) * 180 / np.pi for x1, y1, x2, y2 in lines[:, 0]
    ]
    return float(np.median(angles))


def deskew(gray: np.ndarray, angle_threshold: float = 0.5) -> np.ndarray:
    """Rotate a grayscale page so its text lines are horizontal.

    Args:
        gray: Grayscale input image.
        angle_threshold: Minimum angle (degrees) to trigger correction.

    Returns:
        Deskewed image with the same shape as the input.
    """
    angle = detect_skew_angle(gray)
    if abs(angle) < angle_threshold:
        return gray

    h, w = gray.shape[:2]
    matrix = cv2.getRotationMatrix2D((w // 2, h // 2), angle, 1.0)
    logger.debug("Applied deskew correction: %.2f degrees", angle)
    return cv2.warpAffine(
        gray, matrix, (w, h), flags=cv2.INTER_CUBIC, borderMode=cv2.BORDER_REPLICATE
    )


def preprocess_for_ocr(
    image: np.ndarray,
    denoise_method: str = "bilateral",
    binarize_method: str = "adaptive",
) -> np.ndarray:
    """Run the full cleanup chain on a page image.

    Args:
        image: Input image (BGR or grayscale).
        denoise_method: Method passed to :func:`denoise`.
        binarize_method: Method passed to :func:`binarize`.

    Returns:
        Binarized, deskewed grayscale image ready for OCR.
    """
    gray = to_gray(image)
    gray = denoise(gray, denoise_method)
    gray = deskew(gray)
    return binarize(gray, binarize_method)
