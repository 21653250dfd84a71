"""Pytest configuration and fixtures."""

import io

import numpy as np
import pytest
from PIL import Image


def png_bytes(pixels: np.ndarray, mode: str = None) -> bytes:
    """Encode an array as PNG bytes."""
    buf = io.BytesIO()
    Image.fromarray(pixels, mode).save(buf, format="PNG")
    return buf.getvalue()


def red_square_pixels(size: int = 200, square: int = 100) -> np.ndarray:
    """Pure red square centered on a white canvas."""
    pixels = np.full((size, size, 3), 255, dtype=np.uint8)
    start = (size - square) // 2
    pixels[start:start + square, start:start + square] = [255, 0, 0]
    return pixels


def three_color_pixels(size: int = 90) -> np.ndarray:
    """Vertical red, green and blue stripes."""
    pixels = np.zeros((size, size, 3), dtype=np.uint8)
    third = size // 3
    pixels[:, :third] = [255, 0, 0]
    pixels[:, third:2 * third] = [0, 255, 0]
    pixels[:, 2 * third:] = [0, 0, 255]
    return pixels


@pytest.fixture
def red_square_png():
    """200x200 PNG with a 100x100 red square on white."""
    return png_bytes(red_square_pixels())


@pytest.fixture
def black_rect_png():
    """120x80 PNG with a black rectangle on white."""
    pixels = np.full((80, 120, 3), 255, dtype=np.uint8)
    pixels[20:60, 30:90] = 0
    return png_bytes(pixels)


@pytest.fixture
def three_color_png():
    """90x90 PNG with red, green and blue stripes."""
    return png_bytes(three_color_pixels())
