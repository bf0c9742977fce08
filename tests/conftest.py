"""Shared test fixtures for the text detection test suite."""

from __future__ import annotations

import base64
import io
from collections.abc import Callable

import pytest
from PIL import Image


def encode_image(fmt: str, size: tuple[int, int] = (4, 4)) -> bytes:
    """A tiny solid image encoded in Pillow format ``fmt``."""
    buf = io.BytesIO()
    Image.new("RGB", size, "white").save(buf, format=fmt)
    return buf.getvalue()


@pytest.fixture
def test_user_id() -> str:
    return "test-user@example.com"


@pytest.fixture
def other_user_id() -> str:
    return "other-user@example.com"


@pytest.fixture
def image_bytes() -> Callable[[str], bytes]:
    return encode_image


@pytest.fixture
def png_bytes() -> bytes:
    return encode_image("PNG")


@pytest.fixture
def png_data_url(png_bytes) -> str:
    return "data:image/png;base64," + base64.b64encode(png_bytes).decode("ascii")
