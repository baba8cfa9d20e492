"""Tesseract OCR engine handle used by the worker pool.

Each handle carries its currently loaded language. Recognition is blocking
and is always run off the event loop by the pool.
"""

from dataclasses import dataclass
from pathlib import Path

import numpy as np
import pytesseract
from PIL import Image

from docfusion.utils.logger import get_logger

from .preprocess import preprocess_for_ocr

logger = get_logger(__name__)


@dataclass
class OCRResult:
    """OCR output for a single image."""

    text: str
    confidence: float
    language: str
    word_count: int


class TesseractEngine:
    """One Tesseract recognition handle.

    Args:
        language: Language loaded at construction.
        tesseract_cmd: Path to the Tesseract executable.
            If ``None``, uses the system default.
        psm: Tesseract page segmentation mode.
        preprocess: Whether to clean up images with OpenCV before OCR.
        denoise_method: Denoising method for preprocessing.
        binarize_method: Binarization method for preprocessing.
    """

    def __init__(
        self,
        language: str = "eng",
        tesseract_cmd: str | None = None,
        psm: int = 3,
        preprocess: bool = True,
        denoise_method: str = "bilateral",
        binarize_method: str = "adaptive",
    ) -> None:
        if tesseract_cmd:
            pytesseract.pytesseract.tesseract_cmd = tesseract_cmd
        self.language = language
        self.psm = psm
        self.preprocess = preprocess
        self.denoise_method = denoise_method
        self.binarize_method = binarize_method
        self.closed = False
        self._available: set[str] | None = None

    def load_language(self, language: str) -> None:
        """Switch the handle to another language.

        Args:
            language: Tesseract language code, ``+`` separated for combinations.

        Raises:
            RuntimeError: If a requested language pack is not installed.
        """
        if self._available is None:
            self._available = set(pytesseract.get_languages(config=""))
        missing = [code for code in language.split("+") if code not in self._available]
        if missing:
            raise RuntimeError(
                f"Tesseract language data not installed: {', '.join(missing)}"
            )
        logger.debug("Loaded OCR language %s (was %s)", language, self.language)
        self.language = language

    def recognize(self, image_path: Path) -> OCRResult:
        """Recognize text in an image file with the loaded language.

        Args:
            image_path: Path to the image file.

        Returns:
            Recognized text with mean word confidence in [0, 1].

        Raises:
            RuntimeError: If the handle has been closed.
        """
        if self.closed:
            raise RuntimeError("OCR engine handle is closed")

        with Image.open(image_path) as img:
            image = np.array(img.convert("RGB"))
        if self.preprocess:
            image = preprocess_for_ocr(image, self.denoise_method, self.binarize_method)

        pil_image = Image.fromarray(image)
        config = f"--psm {self.psm}"
        text = pytesseract.image_to_string(pil_image, lang=self.language, config=config)
        data = pytesseract.image_to_data(
            pil_image,
            lang=self.language,
            config=config,
            output_type=pytesseract.Output.DICT,
        )

        confidences = [
            float(conf)
            for conf, word in zip(data["conf"], data["text"], strict=False)
            if float(conf) > 0 and str(word).strip()
        ]
        avg_conf = sum(confidences) / len(confidences) / 100.0 if confidences else 0.0

        logger.debug(
            "OCR recognized %d words in %s with confidence %.2f",
            len(confidences),
            image_path,
            avg_conf,
        )
        return OCRResult(
            text=text,
            confidence=min(max(avg_conf, 0.0), 1.0),
            language=self.language,
            word_count=len(confidences),
        )

    def close(self) -> None:
        """Release the handle; later recognitions fail."""
        self.closed = True
