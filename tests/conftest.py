from __future__ import annotations

import io
import struct
import zlib

import pytest
from PIL import Image


SIGNATURE = b"\x89PNG\r\n\x1a\n"
IEND = b"\x00\x00\x00\x00IEND\xaeB`\x82"
# zlib stream for a single 1x1 grayscale scanline (filter byte + one pixel)
TINY_IDAT = b"x\x9cc`\x00\x00\x00\x02\x00\x01"


def make_chunk(chunk_type: bytes, data: bytes) -> bytes:
    crc = zlib.crc32(chunk_type + data) & 0xFFFFFFFF
    return struct.pack(">I", len(data)) + chunk_type + data + struct.pack(">I", crc)


def make_png(*chunks: bytes) -> bytes:
    return SIGNATURE + b"".join(chunks) + IEND


@pytest.fixture
def empty_png() -> bytes:
    """Signature followed directly by IEND."""
    return SIGNATURE + IEND


@pytest.fixture
def tiny_png() -> bytes:
    """67-byte 1x1 grayscale PNG: signature, IHDR, IDAT, IEND."""
    ihdr = struct.pack(">IIBBBBB", 1, 1, 8, 0, 0, 0, 0)
    return make_png(make_chunk(b"IHDR", ihdr), make_chunk(b"IDAT", TINY_IDAT))


@pytest.fixture
def pillow_png() -> bytes:
    img = Image.new("RGB", (8, 8), (10, 200, 30))
    out = io.BytesIO()
    img.save(out, format="PNG")
    return out.getvalue()
