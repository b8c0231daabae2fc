"""Perceptual image fingerprints and their Hamming distance."""

import asyncio
import hashlib
import io
import logging

import imagehash
from PIL import Image, UnidentifiedImageError

logger = logging.getLogger(__name__)

# 64-bit fingerprints rendered as 16 hex chars
FINGERPRINT_HEX_LEN = 16


def url_fingerprint(canonical_url: str) -> str:
    """Content-independent fingerprint used when the bytes cannot be decoded."""
    return hashlib.sha256(canonical_url.encode("utf-8")).hexdigest()[:FINGERPRINT_HEX_LEN]


def phash_bytes(data: bytes) -> str:
    """pHash of raw image bytes. Raises on undecodable input."""
    with Image.open(io.BytesIO(data)) as img:
        return str(imagehash.phash(img.convert("RGB")))


async def compute_fingerprint(
    data: bytes | None, canonical_url: str, timeout: float = 10.0
) -> str:
    """Fingerprint an image, falling back to the canonical URL.

    Decoding runs in a worker thread so the event loop keeps serving other
    candidate fetches. SVGs, truncated downloads and timeouts all fall back.
    """
    if not data:
        return url_fingerprint(canonical_url)
    try:
        return await asyncio.wait_for(asyncio.to_thread(phash_bytes, data), timeout)
    except (
        UnidentifiedImageError,
        Image.DecompressionBombError,
        OSError,
        ValueError,
        asyncio.TimeoutError,
    ) as e:
        logger.debug(f"pHash failed for {canonical_url}, using URL fingerprint: {e!r}")
        return url_fingerprint(canonical_url)


def hamming_distance(a: str, b: str) -> int:
    """Number of differing bits between two equal-length hex fingerprints."""
    if len(a) != len(b):
        raise ValueError(f"Fingerprint lengths differ: {len(a)} != {len(b)}")
    return bin(int(a, 16) ^ int(b, 16)).count("1")
