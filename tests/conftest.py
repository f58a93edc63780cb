"""Pytest configuration for test path setup."""
import io
import os
import sys

import pytest

# Add project root to Python path
project_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if project_root not in sys.path:
    sys.path.insert(0, project_root)


@pytest.fixture
def make_image_bytes():
    """Encode a solid-colour Pillow image to bytes."""
    from PIL import Image

    def _make(width=40, height=30, fmt="JPEG", color=(200, 30, 30), mode="RGB"):
        image = Image.new(mode, (width, height), color)
        buffer = io.BytesIO()
        image.save(buffer, format=fmt)
        return buffer.getvalue()

    return _make


@pytest.fixture
def memory_storage():
    from nocrop.storage.memory_storage import MemoryStorage

    return MemoryStorage()
