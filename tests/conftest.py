"""Shared test fixtures for the document metadata test suite."""

from pathlib import Path

import numpy as np
import pytest

INVOICE_TEXT = """INVOICE
Invoice Number: INV-2024-001
Date: 2024-01-15
Bill To: Acme Corp
123 Main Street

Description          Qty    Price
Consulting services  10     150.00

Subtotal: $1,400.00
Total: $1,500.00
Payment due within 30 days of the invoice date.
"""


@pytest.fixture
def sample_image() -> np.ndarray:
    """Create a simple synthetic grayscale test image."""
    image = np.zeros((200, 300), dtype=np.uint8)
    image[50:150, 50:250] = 255
    return image


@pytest.fixture
def sample_color_image() -> np.ndarray:
    """Create a simple synthetic BGR test image."""
    image = np.zeros((200, 300, 3), dtype=np.uint8)
    image[50:150, 50:250] = (255, 255, 255)
    return image


@pytest.fixture
def project_root() -> Path:
    """Return the project root directory."""
    return Path(__file__).parent.parent


@pytest.fixture
def config_dir(project_root: Path) -> Path:
    """Return the configs directory path."""
    return project_root / "configs"


@pytest.fixture
def invoice_text() -> str:
    """Return the text of a small, well-formed invoice."""
    return INVOICE_TEXT


@pytest.fixture
def invoice_file(tmp_path: Path) -> Path:
    """Write the sample invoice to a plain text file."""
    path = tmp_path / "invoice.txt"
    path.write_text(INVOICE_TEXT)
    return path
