"""Near-duplicate removal by perceptual fingerprint.

Candidates are fetched concurrently in small windows, but the keep/drop
decision runs strictly in discovery order against the fingerprints kept so
far (first seen wins). The relation is applied greedily, so it is not
transitive: C may be dropped as a near copy of B while A, which C does not
resemble, is kept alongside B.
"""

import asyncio
import logging
from dataclasses import dataclass

import httpx

from app.core.exceptions import CandidateFetchError
from app.core.metrics import candidates_total
from app.services.canonical import canonical_key
from app.services.fingerprint import compute_fingerprint, hamming_distance
from app.services.image_models import CandidateImage, DedupedImage
from app.services.quality_filter import ProbeError, probe_bytes

logger = logging.getLogger(__name__)


@dataclass
class _Inspection:
    candidate: CandidateImage
    fingerprint: str | None = None
    has_known_size: bool = False
    dimensions: tuple[int, int] | None = None
    outcome: str = "ok"


def _content_length(headers: httpx.Headers) -> int | None:
    raw = headers.get("content-length")
    if raw is None:
        return None
    try:
        size = int(raw)
    except ValueError:
        return None
    return size if size >= 0 else None


class SimilarityDeduplicator:
    def __init__(
        self,
        http: httpx.AsyncClient,
        limit: int = 50,
        min_bytes: int = 20_000,
        threshold: int = 8,
        concurrency: int = 8,
        fetch_timeout: float = 8.0,
        max_bytes: int = 10 * 1024 * 1024,
    ):
        self.http = http
        self.limit = limit
        self.min_bytes = min_bytes
        self.threshold = threshold
        self.concurrency = max(1, concurrency)
        self.fetch_timeout = fetch_timeout
        self.max_bytes = max_bytes

    async def _fetch(self, url: str) -> tuple[httpx.Headers, bytes | None, str]:
        """GET an image. Returns (headers, body or None, outcome).

        Bodies over ``max_bytes`` are abandoned and returned as None with an
        "ok" outcome, so the candidate falls back to its URL fingerprint.
        """
        try:
            async with self.http.stream(
                "GET", url, timeout=self.fetch_timeout, follow_redirects=True
            ) as resp:
                if not resp.is_success:
                    raise CandidateFetchError(f"HTTP {resp.status_code}", details=url)

                size = _content_length(resp.headers)
                if size is not None and size < self.min_bytes:
                    return resp.headers, None, "too_small"

                content_type = resp.headers.get("content-type", "")
                if content_type and not content_type.lower().startswith("image/"):
                    return resp.headers, None, "not_image"

                if size is not None and size > self.max_bytes:
                    logger.debug(f"Not downloading {url}: {size} bytes")
                    return resp.headers, None, "ok"

                body = bytearray()
                async for chunk in resp.aiter_bytes():
                    body.extend(chunk)
                    if len(body) > self.max_bytes:
                        logger.debug(f"Stopped reading {url} after {len(body)} bytes")
                        return resp.headers, None, "ok"
                return resp.headers, bytes(body), "ok"
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise CandidateFetchError(f"{type(e).__name__}: {e}", details=url) from e

    async def _inspect(self, candidate: CandidateImage) -> _Inspection:
        try:
            headers, body, outcome = await self._fetch(candidate.url)
        except CandidateFetchError as e:
            logger.debug(f"Skipping {candidate.url}: {e.message}")
            return _Inspection(candidate, outcome="fetch_failed")

        if outcome != "ok":
            return _Inspection(candidate, outcome=outcome)

        fingerprint = await compute_fingerprint(body, canonical_key(candidate.url))
        dimensions = None
        if body:
            try:
                dimensions = probe_bytes(body)
            except ProbeError as e:
                logger.debug(f"Dimensions unreadable for {candidate.url}: {e}")
        return _Inspection(
            candidate,
            fingerprint=fingerprint,
            has_known_size=_content_length(headers) is not None,
            dimensions=dimensions,
        )

    def _is_duplicate(self, fingerprint: str, kept: list[DedupedImage]) -> bool:
        for item in kept:
            try:
                if hamming_distance(fingerprint, item.fingerprint) <= self.threshold:
                    return True
            except ValueError:
                # Mixed fingerprint widths can only match exactly
                if fingerprint == item.fingerprint:
                    return True
        return False

    async def dedupe(self, candidates: list[CandidateImage]) -> list[DedupedImage]:
        kept: list[DedupedImage] = []

        for start in range(0, len(candidates), self.concurrency):
            if len(kept) >= self.limit:
                break
            window = candidates[start : start + self.concurrency]
            inspections = await asyncio.gather(*(self._inspect(c) for c in window))

            for inspection in inspections:
                if len(kept) >= self.limit:
                    break
                if inspection.fingerprint is None:
                    candidates_total.labels(outcome=inspection.outcome).inc()
                    continue
                if self._is_duplicate(inspection.fingerprint, kept):
                    candidates_total.labels(outcome="duplicate").inc()
                    logger.debug(f"Dropping near-duplicate {inspection.candidate.url}")
                    continue
                candidates_total.labels(outcome="kept").inc()
                kept.append(
                    DedupedImage.from_candidate(
                        inspection.candidate,
                        fingerprint=inspection.fingerprint,
                        has_known_size=inspection.has_known_size,
                        dimensions=inspection.dimensions,
                    )
                )

        logger.info(f"Dedup kept {len(kept)} of {len(candidates)} candidates")
        return kept
