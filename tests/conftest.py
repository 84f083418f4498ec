"""
Shared fixtures for the Prompt Tagger tests.
"""

import struct
import zlib

import pytest

from prompt_tagger.config import Settings
from prompt_tagger.png_text import PNG_SIGNATURE


def png_chunk(chunk_type: bytes, data: bytes) -> bytes:
    """Serialize one PNG chunk (length, type, data, crc)."""
    crc = zlib.crc32(chunk_type + data) & 0xFFFFFFFF
    return struct.pack("!I", len(data)) + chunk_type + data + struct.pack("!I", crc)


def build_png(*chunks: bytes) -> bytes:
    """A 1x1 grayscale PNG with the given extra chunks before IDAT."""
    ihdr = png_chunk(b"IHDR", struct.pack("!IIBBBBB", 1, 1, 8, 0, 0, 0, 0))
    idat = png_chunk(b"IDAT", zlib.compress(b"\x00\x00"))
    iend = png_chunk(b"IEND", b"")
    return PNG_SIGNATURE + ihdr + b"".join(chunks) + idat + iend


def text_chunk(keyword: str, text: str) -> bytes:
    return png_chunk(b"tEXt", keyword.encode("latin-1") + b"\x00" + text.encode("latin-1"))


@pytest.fixture
def settings(tmp_path):
    """Settings pointing at a temporary originals folder with fast timings."""
    return Settings(
        _env_file=None,
        photoprism_url="http://photoprism.test/",
        photoprism_token="secret-token",
        originals_path=tmp_path,
        stability_timeout=1.0,
        stability_poll_interval=0.01,
        uid_lookup_attempts=3,
        uid_lookup_interval=0.0,
        max_retries=2,
        retry_delay=0.01,
        poll_interval=30.0,
        poll_page_size=10,
    )


STANDARD_PARAMETERS = (
    "a cat, (tree:1.1)\n"
    "Negative prompt: blurry\n"
    "Steps: 20, Sampler: Euler a, CFG scale: 7, Seed: 42, Size: 512x512, Model: foo.safetensors"
)
