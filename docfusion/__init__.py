"""Document metadata extraction with multi-source confidence fusion.

Runs independently fallible extraction strategies (PDF text layer, Poppler,
Tesseract OCR, raw PDF scanning, table parsers, and an optional AI service)
and fuses their outputs into one metadata record with calibrated confidence
and per-field provenance.
"""

__version__ = "1.0.0"
