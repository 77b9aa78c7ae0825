"""Embed/extract text metadata in PNG tEXt chunks.

A PNG file is an 8-byte signature followed by chunks laid out as
``length (4, big-endian) | type (4) | data (length) | crc (4)``. This module
walks that layout in place and never decodes image data:

- ``embed`` — build a ``keyword\\0text`` tEXt chunk and splice it in before IEND
- ``extract`` — return the text stored under a keyword, or ``None``

Scans are bounded by the buffer: a truncated header or a declared length that
runs past the end stops the scan as if the chunk stream had ended.
"""

from __future__ import annotations

import struct
from typing import Iterator, NamedTuple, Optional, Tuple


PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"
TEXT_CHUNK = b"tEXt"
END_CHUNK = b"IEND"
CHUNK_OVERHEAD = 12  # length + type + crc

_CRC_POLY = 0xEDB88320


class PngFormatError(ValueError):
    """The buffer has no usable chunk structure for the requested operation."""


class Chunk(NamedTuple):
    offset: int
    length: int
    type: bytes
    data: bytes
    crc: int


def crc32(data: bytes) -> int:
    crc = 0xFFFFFFFF
    for byte in data:
        crc ^= byte
        for _ in range(8):
            if crc & 1:
                crc = (crc >> 1) ^ _CRC_POLY
            else:
                crc >>= 1
    return (crc ^ 0xFFFFFFFF) & 0xFFFFFFFF


def _as_type(chunk_type) -> bytes:
    if isinstance(chunk_type, str):
        return chunk_type.encode("ascii")
    return bytes(chunk_type)


def _read_header(png: bytes, offset: int) -> Optional[Tuple[int, bytes]]:
    if offset + 8 > len(png):
        return None
    length, chunk_type = struct.unpack(">I4s", png[offset:offset + 8])
    if offset + CHUNK_OVERHEAD + length > len(png):
        return None
    return length, chunk_type


def iter_chunks(png: bytes) -> Iterator[Chunk]:
    """Yield chunks in file order, stopping after IEND or at the first truncated chunk."""
    offset = len(PNG_SIGNATURE)
    while True:
        header = _read_header(png, offset)
        if header is None:
            return
        length, chunk_type = header
        data_end = offset + 8 + length
        (crc,) = struct.unpack(">I", png[data_end:data_end + 4])
        yield Chunk(offset, length, chunk_type, bytes(png[offset + 8:data_end]), crc)
        if chunk_type == END_CHUNK:
            return
        offset = data_end + 4


def chunk_crc_ok(chunk: Chunk) -> bool:
    return crc32(chunk.type + chunk.data) == chunk.crc


def find_chunk(png: bytes, chunk_type) -> int:
    """Offset of the first chunk of ``chunk_type`` before IEND, or -1.

    Searching for IEND itself returns its offset.
    """
    wanted = _as_type(chunk_type)
    offset = len(PNG_SIGNATURE)
    while True:
        header = _read_header(png, offset)
        if header is None:
            return -1
        length, found = header
        if found == wanted:
            return offset
        if found == END_CHUNK:
            return -1
        offset += CHUNK_OVERHEAD + length


def split_text_payload(data: bytes) -> Optional[Tuple[str, str]]:
    """Split tEXt data into (keyword, text); ``None`` when the keyword is empty or unterminated."""
    null_idx = data.find(b"\x00")
    if null_idx <= 0:
        return None
    keyword = data[:null_idx].decode("utf-8", errors="replace")
    text = data[null_idx + 1:].decode("utf-8", errors="replace")
    return keyword, text


def iter_text_chunks(png: bytes) -> Iterator[Tuple[str, str]]:
    for chunk in iter_chunks(png):
        if chunk.type != TEXT_CHUNK:
            continue
        pair = split_text_payload(chunk.data)
        if pair is not None:
            yield pair


def extract_text(png: bytes, keyword: str) -> Optional[str]:
    for key, text in iter_text_chunks(png):
        if key == keyword:
            return text
    return None


def build_text_chunk(keyword: str, text: str) -> bytes:
    data = keyword.encode("utf-8") + b"\x00" + text.encode("utf-8")
    crc = crc32(TEXT_CHUNK + data)
    return struct.pack(">I", len(data)) + TEXT_CHUNK + data + struct.pack(">I", crc)


def insertion_point(png: bytes, strict: bool = False) -> int:
    """Offset where a new ancillary chunk goes: the IEND chunk.

    Without IEND the last 12 bytes are assumed to be IEND anyway, unless
    ``strict`` is set.
    """
    if len(png) < CHUNK_OVERHEAD:
        raise PngFormatError(f"Buffer too short for a PNG chunk stream ({len(png)} bytes)")
    pos = find_chunk(png, END_CHUNK)
    if pos != -1:
        return pos
    if strict:
        raise PngFormatError("IEND chunk not found")
    return len(png) - CHUNK_OVERHEAD


def splice(png: bytes, chunk: bytes, position: int) -> bytes:
    return b"".join((png[:position], chunk, png[position:]))


def embed(png: bytes, keyword: str, text: str, strict: bool = False) -> bytes:
    """Return a copy of ``png`` with ``text`` stored under ``keyword`` just before IEND."""
    position = insertion_point(png, strict=strict)
    return splice(bytes(png), build_text_chunk(keyword, text), position)


def extract(png: bytes, keyword: str) -> Optional[str]:
    """Return the text stored under ``keyword``, or ``None`` if no such tEXt chunk exists."""
    return extract_text(png, keyword)
