"""
Reading embedded prompt text from image files.

The processor only needs a callable ``path -> Optional[text map]``; the
default implementation tries the PNG chunk decoder, then exiftool, then
Pillow's EXIF reader. Failures of any kind mean "no metadata".
"""

import asyncio
from pathlib import Path
from typing import Awaitable, Callable, Dict, Optional

from PIL import Image, UnidentifiedImageError

from .logging import get_logger
from .png_text import PNG_SIGNATURE, decode_text_chunks

TextMap = Dict[str, str]
Extractor = Callable[[Path], Awaitable[Optional[TextMap]]]

EXIFTOOL_TAGS = ["-Parameters", "-UserComment", "-Comment", "-XMP:Description"]

EXIF_IFD = 0x8769
EXIF_USER_COMMENT = 0x9286
EXIF_IMAGE_DESCRIPTION = 0x010E

logger = get_logger("extraction")


def read_png_text(path: Path) -> TextMap:
    """Text chunks of a PNG file, or {} for anything else."""
    with open(path, "rb") as f:
        data = f.read()
    if not data.startswith(PNG_SIGNATURE):
        return {}
    return decode_text_chunks(data)


async def run_exiftool(path: Path, exiftool: str = "exiftool", timeout: float = 30.0) -> Optional[str]:
    """Ask exiftool for the prompt-bearing tags of a file."""
    try:
        process = await asyncio.create_subprocess_exec(
            exiftool, "-s3", *EXIFTOOL_TAGS, str(path),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as e:
        logger.warning(f"⚠️  Exiftool prompt extraction failed | file: {path} | error: {e}")
        return None

    try:
        stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        process.kill()
        await process.wait()
        logger.warning(f"⚠️  Exiftool timed out after {timeout:.0f}s | file: {path}")
        return None

    if process.returncode != 0:
        logger.warning(
            f"⚠️  Exiftool exited with {process.returncode} | file: {path} | "
            f"error: {stderr.decode('utf-8', errors='replace').strip()[:200]}"
        )
        return None

    text = stdout.decode("utf-8", errors="replace").strip()
    return text or None


def decode_user_comment(value) -> Optional[str]:
    """Decode an EXIF UserComment (8-byte charset prefix + payload)."""
    if isinstance(value, str):
        return value.strip("\x00").strip() or None
    if not isinstance(value, bytes) or not value:
        return None

    prefix, payload = value[:8], value[8:]
    if prefix.startswith(b"UNICODE"):
        # Writers disagree on byte order; pick the one that decodes to sensible text
        for encoding in ("utf-16-be", "utf-16-le"):
            try:
                text = payload.decode(encoding)
            except UnicodeDecodeError:
                continue
            if text.isprintable() or "\n" in text:
                return text.strip("\x00").strip() or None
        return payload.decode("utf-16-be", errors="replace").strip("\x00").strip() or None
    if prefix.startswith((b"ASCII", b"\x00\x00\x00\x00\x00\x00\x00\x00", b"JIS")):
        return payload.decode("utf-8", errors="replace").strip("\x00").strip() or None
    return value.decode("utf-8", errors="replace").strip("\x00").strip() or None


def read_pillow_text(path: Path) -> TextMap:
    """Prompt text visible through Pillow: EXIF UserComment / ImageDescription and text info."""
    found: TextMap = {}
    try:
        with Image.open(path) as img:
            for key, value in img.info.items():
                if isinstance(key, str) and isinstance(value, str) and value.strip():
                    found[key] = value

            exif = img.getexif()
            comment = decode_user_comment(exif.get_ifd(EXIF_IFD).get(EXIF_USER_COMMENT))
            if comment:
                found["parameters"] = comment
            description = exif.get(EXIF_IMAGE_DESCRIPTION)
            if isinstance(description, str) and description.strip():
                found.setdefault("description", description)
    except (OSError, UnidentifiedImageError, ValueError) as e:
        logger.debug(f"Pillow could not read {path}: {e}")
        return {}
    return found


class MetadataExtractor:
    """Default extractor: PNG chunks, then exiftool, then Pillow."""

    def __init__(self, exiftool: str = "exiftool", timeout: float = 30.0):
        self.exiftool = exiftool
        self.timeout = timeout

    async def __call__(self, path: Path) -> Optional[TextMap]:
        path = Path(path)

        if path.suffix.lower() == ".png":
            try:
                text_map = await asyncio.to_thread(read_png_text, path)
            except OSError as e:
                logger.warning(f"⚠️  Cannot read {path}: {e}")
                return None
            if text_map:
                return text_map

        text = await run_exiftool(path, self.exiftool, self.timeout)
        if text:
            return {"parameters": text}

        text_map = await asyncio.to_thread(read_pillow_text, path)
        return text_map or None
