"""PDF rasterization for OCR of image-only PDFs.

Renders PDF pages to PNG files so the OCR worker pool can recognize them
like any other scanned image.
"""

from pathlib import Path

from pdf2image import convert_from_path
from pdf2image.pdf2image import pdfinfo_from_path

from docfusion.utils.logger import get_logger

logger = get_logger(__name__)


class PDFHandler:
    """Handles PDF to image conversion for OCR processing.

    Args:
        dpi: Resolution for PDF rendering. Higher values produce
            better OCR results but use more memory.
    """

    def __init__(self, dpi: int = 300) -> None:
        self.dpi = dpi

    def rasterize(self, pdf_path: Path, output_dir: Path) -> list[Path]:
        """Render every page of a PDF to a PNG file.

        Args:
            pdf_path: Path to the PDF file.
            output_dir: Existing directory receiving the page images.

        Returns:
            Page image paths in page order.

        Raises:
            FileNotFoundError: If the PDF does not exist.
            RuntimeError: If PDF conversion fails.
        """
        if not pdf_path.exists():
            raise FileNotFoundError(f"PDF file not found: {pdf_path}")
        try:
            pages = convert_from_path(
                str(pdf_path),
                dpi=self.dpi,
                output_folder=str(output_dir),
                fmt="png",
                paths_only=True,
            )
        except Exception as exc:
            raise RuntimeError(f"PDF conversion failed: {exc}") from exc

        paths = sorted(Path(p) for p in pages)
        logger.info(
            "Rasterized %d pages from %s at %d DPI", len(paths), pdf_path.name, self.dpi
        )
        return paths

    def get_page_count(self, pdf_path: Path) -> int:
        """Get the number of pages in a PDF without converting.

        Args:
            pdf_path: Path to the PDF file.

        Returns:
            Number of pages in the PDF.
        """
        info = pdfinfo_from_path(str(pdf_path))
        count = int(info["Pages"])
        logger.debug("PDF %s has %d pages", pdf_path, count)
        return count
