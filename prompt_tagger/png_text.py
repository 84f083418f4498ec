"""
PNG text chunk decoding (tEXt, zTXt and iTXt).

Generation tools store their parameters in PNG text chunks. This module
walks the chunk stream of a PNG container and returns every keyword/text
pair it can decode. Chunks that are truncated or malformed contribute
nothing; decoding of the remaining chunks carries on.
"""

import struct
import zlib
from typing import Dict, Iterator, List, Optional, Tuple

PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"
COMPRESSION_DEFLATE = 0

# length (4) + type (4) ... data ... + crc (4)
_CHUNK_HEADER = struct.Struct("!I4s")


def iter_chunks(data: bytes) -> Iterator[Tuple[str, bytes]]:
    """Yield (chunk type, chunk data) pairs until IEND or the data runs out."""
    if not data.startswith(PNG_SIGNATURE):
        return

    offset = len(PNG_SIGNATURE)
    while offset + _CHUNK_HEADER.size <= len(data):
        length, raw_type = _CHUNK_HEADER.unpack_from(data, offset)
        start = offset + _CHUNK_HEADER.size
        end = start + length
        if end > len(data):
            # Truncated chunk: nothing after it can be trusted
            return

        chunk_type = raw_type.decode("latin-1")
        yield chunk_type, data[start:end]

        if chunk_type == "IEND":
            return
        offset = end + 4


def _inflate(payload: bytes) -> Optional[bytes]:
    try:
        return zlib.decompress(payload)
    except zlib.error:
        return None


def _decode_text(payload: bytes) -> Tuple[Optional[str], Optional[str]]:
    """tEXt: keyword\\0text, both latin-1."""
    sep = payload.find(b"\x00")
    if sep <= 0:
        return None, None
    return payload[:sep].decode("latin-1"), payload[sep + 1:].decode("latin-1")


def _decode_ztxt(payload: bytes) -> Tuple[Optional[str], Optional[str]]:
    """zTXt: keyword\\0 method(1) compressed-text."""
    sep = payload.find(b"\x00")
    if sep <= 0 or len(payload) < sep + 2:
        return None, None

    method = payload[sep + 1]
    if method != COMPRESSION_DEFLATE:
        return None, None

    inflated = _inflate(payload[sep + 2:])
    if inflated is None:
        return None, None
    return payload[:sep].decode("latin-1"), inflated.decode("utf-8", errors="replace")


def _decode_itxt(payload: bytes) -> Tuple[Optional[str], Optional[str]]:
    """iTXt: keyword\\0 flag(1) method(1) language\\0 translated-keyword\\0 text."""
    sep = payload.find(b"\x00")
    if sep <= 0 or len(payload) < sep + 3:
        return None, None

    keyword = payload[:sep].decode("latin-1")
    compressed = payload[sep + 1]
    method = payload[sep + 2]
    offset = sep + 3

    # Language tag and translated keyword must both be terminated
    for _ in range(2):
        end = payload.find(b"\x00", offset)
        if end < 0:
            return None, None
        offset = end + 1

    text = payload[offset:]
    if compressed:
        if method != COMPRESSION_DEFLATE:
            return None, None
        text = _inflate(text)
        if text is None:
            return None, None

    return keyword, text.decode("utf-8", errors="replace")


_DECODERS = {
    "tEXt": _decode_text,
    "zTXt": _decode_ztxt,
    "iTXt": _decode_itxt,
}


def decode_text_chunks(data: bytes) -> Dict[str, str]:
    """Collect all text chunks of a PNG as {keyword: text}.

    Keywords keep their original case. Several chunks sharing a keyword are
    joined with newlines in the order they appear. Anything that is not a
    PNG, or a PNG without text chunks, yields an empty dict.
    """
    collected: Dict[str, List[str]] = {}

    for chunk_type, payload in iter_chunks(data):
        decoder = _DECODERS.get(chunk_type)
        if decoder is None:
            continue
        keyword, text = decoder(payload)
        if not keyword or text is None:
            continue
        collected.setdefault(keyword, []).append(text)

    return {keyword: "\n".join(texts) for keyword, texts in collected.items()}
