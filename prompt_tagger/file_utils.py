"""
Local file helpers: supported types, write stabilization and name resolution.
"""

import asyncio
import os
import time
import unicodedata
from pathlib import Path
from typing import Iterator, List, Optional, Tuple
from urllib.parse import unquote

from .logging import get_logger

SUPPORTED_EXTENSIONS = (".png", ".webp", ".jpg", ".jpeg")

logger = get_logger("file_utils")


def is_supported_image(name) -> bool:
    """True if the file name ends with a supported image extension (any case)."""
    return str(name).lower().endswith(SUPPORTED_EXTENSIONS)


async def wait_for_stable(path: Path, timeout: float = 10.0, poll_interval: float = 1.0) -> bool:
    """Wait until the file size stops changing.

    Returns False if the file disappeared while waiting. When the timeout
    elapses first the file is treated as stable enough.
    """
    start = time.monotonic()
    last_size = -1

    while time.monotonic() - start < timeout:
        try:
            current_size = os.stat(path).st_size
        except FileNotFoundError:
            return False

        if current_size == last_size:
            return True
        last_size = current_size

        await asyncio.sleep(poll_interval)

    return Path(path).exists()


def _strip_duplicate_extension(name: str) -> str:
    """``a.png.png`` -> ``a.png``"""
    lower = name.lower()
    for ext in SUPPORTED_EXTENSIONS:
        doubled = ext + ext
        if lower.endswith(doubled):
            return name[: -len(ext)]
    return name


def _name_variants(name: str) -> List[str]:
    """Spellings the same file may have on disk, most likely first."""
    bases = [name, unquote(name)]
    variants: List[str] = []
    for base in bases:
        for form in (base, unicodedata.normalize("NFC", base), unicodedata.normalize("NFD", base)):
            for candidate in (form, _strip_duplicate_extension(form)):
                if candidate not in variants:
                    variants.append(candidate)
        suffix = Path(base).suffix
        if suffix and is_supported_image(base):
            doubled = base + suffix
            if doubled not in variants:
                variants.append(doubled)
    return variants


def _loose_key(name: str) -> str:
    return _strip_duplicate_extension(unicodedata.normalize("NFC", unquote(name))).casefold()


def _stem_key(name: str) -> str:
    key = _loose_key(name)
    while is_supported_image(key):
        key = key.rsplit(".", 1)[0]
    return key


def _resolve_directory(root: Path, folder: str) -> Optional[Path]:
    if not folder:
        return root
    for variant in _name_variants(folder.strip("/")):
        directory = root / variant
        if directory.is_dir():
            return directory
    return None


def resolve_local_file(root: Path, folder: str, filename: str) -> Optional[Path]:
    """Find the local file behind a remote (folder, filename) pair.

    Tries the exact path, then Unicode-normalized / percent-decoded /
    duplicate-extension spellings, then a scan of the directory for a
    loosely equal name, and finally a file with the same stem.
    """
    directory = _resolve_directory(Path(root), folder)
    if directory is None:
        logger.debug(f"Folder not found locally: {folder}")
        return None

    exact = directory / filename
    if exact.is_file():
        return exact

    for variant in _name_variants(filename):
        candidate = directory / variant
        if candidate.is_file():
            return candidate

    try:
        entries = [entry for entry in directory.iterdir() if entry.is_file()]
    except OSError as e:
        logger.warning(f"⚠️  Cannot list {directory}: {e}")
        return None

    wanted = _loose_key(filename)
    for entry in entries:
        if _loose_key(entry.name) == wanted:
            return entry

    wanted_stem = _stem_key(filename)
    for entry in entries:
        if is_supported_image(entry.name) and _stem_key(entry.name) == wanted_stem:
            return entry

    return None


def relative_photo_path(root: Path, file_path: Path) -> Tuple[str, str]:
    """Split a local path into (filename, folder relative to root with '/' separators)."""
    file_path = Path(file_path)
    filename = file_path.name
    relative_dir = Path(os.path.relpath(file_path.parent, root))
    folder = "" if str(relative_dir) == "." else relative_dir.as_posix()
    return filename, folder


def scan_images(root: Path) -> Iterator[Path]:
    """Yield every supported image under root (symlinked folders are not followed)."""
    for dirpath, _dirnames, filenames in os.walk(root, followlinks=False):
        for filename in sorted(filenames):
            if is_supported_image(filename):
                yield Path(dirpath) / filename
