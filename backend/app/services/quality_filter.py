"""Drop images that are too small or look like non-product assets."""

import asyncio
import io
import logging
import re

import httpx
from PIL import Image, ImageFile

from app.core.metrics import candidates_total
from app.services.canonical import file_name
from app.services.image_models import DedupedImage

logger = logging.getLogger(__name__)

# Header-only probe: stop reading after this many bytes
PROBE_MAX_BYTES = 256 * 1024

# File names that give away an icon or logo
ICON_NAME_RE = re.compile(r"(icon|logo)", re.IGNORECASE)

PROBE_FAILURE_KEEP = "keep"
PROBE_FAILURE_DROP = "drop"


class ProbeError(Exception):
    """The image header could not be read or decoded."""


def probe_bytes(data: bytes) -> tuple[int, int]:
    """Return (width, height) from already downloaded image bytes.

    Only the header is read; pixel data is never decoded.
    """
    try:
        with Image.open(io.BytesIO(data)) as img:
            return img.size
    except (OSError, ValueError, Image.DecompressionBombError) as e:
        raise ProbeError(str(e)) from e


async def probe_dimensions(
    http: httpx.AsyncClient, url: str, timeout: float = 8.0
) -> tuple[int, int]:
    """Stream just enough of ``url`` to read its pixel dimensions."""
    parser = ImageFile.Parser()
    read = 0
    try:
        async with http.stream(
            "GET", url, timeout=timeout, follow_redirects=True
        ) as resp:
            if not resp.is_success:
                raise ProbeError(f"HTTP {resp.status_code}")
            async for chunk in resp.aiter_bytes():
                parser.feed(chunk)
                read += len(chunk)
                if parser.image is not None or read >= PROBE_MAX_BYTES:
                    break
    except (httpx.HTTPError, httpx.InvalidURL) as e:
        raise ProbeError(f"{type(e).__name__}: {e}") from e
    except (OSError, ValueError) as e:
        raise ProbeError(str(e)) from e

    if parser.image is None:
        raise ProbeError("image header not found")
    return parser.image.size


class QualityFilter:
    """Second-pass filter over deduplicated images.

    Images whose size the transport reported skip the dimension check.
    Otherwise the dimensions read from the deduplicator's download are used,
    and only images it could not read are probed over the network.
    ``probe_failure`` decides what happens when a probe fails: "keep" lets
    the image through, "drop" removes it.
    """

    def __init__(
        self,
        http: httpx.AsyncClient,
        min_dimension: int = 300,
        probe_failure: str = PROBE_FAILURE_KEEP,
        probe_timeout: float = 8.0,
    ):
        if probe_failure not in (PROBE_FAILURE_KEEP, PROBE_FAILURE_DROP):
            raise ValueError(f"Unknown probe failure policy: {probe_failure!r}")
        self.http = http
        self.min_dimension = min_dimension
        self.probe_failure = probe_failure
        self.probe_timeout = probe_timeout

    async def _accept(self, image: DedupedImage) -> bool:
        if ICON_NAME_RE.search(file_name(image.url)):
            candidates_total.labels(outcome="rejected").inc()
            return False
        if image.has_known_size:
            return True

        try:
            if image.dimensions is not None:
                width, height = image.dimensions
            else:
                width, height = await probe_dimensions(
                    self.http, image.url, timeout=self.probe_timeout
                )
        except ProbeError as e:
            keep = self.probe_failure == PROBE_FAILURE_KEEP
            logger.debug(
                f"Dimension probe failed for {image.url} ({e}); "
                f"{'keeping' if keep else 'dropping'}"
            )
            if not keep:
                candidates_total.labels(outcome="probe_failed").inc()
            return keep

        if max(width, height) < self.min_dimension:
            candidates_total.labels(outcome="too_small").inc()
            logger.debug(f"Dropping {image.url}: {width}x{height}")
            return False
        return True

    async def filter(self, images: list[DedupedImage]) -> list[DedupedImage]:
        verdicts = await asyncio.gather(*(self._accept(img) for img in images))
        kept = [img for img, ok in zip(images, verdicts) if ok]
        logger.info(f"Quality filter kept {len(kept)} of {len(images)} images")
        return kept
