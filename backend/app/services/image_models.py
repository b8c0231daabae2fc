"""Value types flowing through the image pipeline."""

from dataclasses import dataclass, asdict
from typing import Literal

ImageType = Literal["ui_screenshot", "lifestyle"]


@dataclass(frozen=True)
class CandidateImage:
    """An image reference discovered on a page, before any download."""

    url: str
    landing_page: str
    alt: str | None = None
    context: str | None = None


@dataclass(frozen=True)
class DedupedImage:
    """A candidate that survived content-fingerprint deduplication."""

    url: str
    landing_page: str
    fingerprint: str
    has_known_size: bool
    alt: str | None = None
    context: str | None = None
    # (width, height) read from the downloaded bytes, when they decoded
    dimensions: tuple[int, int] | None = None

    @classmethod
    def from_candidate(
        cls,
        candidate: CandidateImage,
        fingerprint: str,
        has_known_size: bool,
        dimensions: tuple[int, int] | None = None,
    ) -> "DedupedImage":
        return cls(
            url=candidate.url,
            landing_page=candidate.landing_page,
            fingerprint=fingerprint,
            has_known_size=has_known_size,
            dimensions=dimensions,
            alt=candidate.alt,
            context=candidate.context,
        )


@dataclass(frozen=True)
class EnrichmentResult:
    url: str
    alt: str
    type: ImageType | None = None
    confidence: float | None = None


@dataclass(frozen=True)
class FinalImage:
    url: str
    landing_page: str
    alt: str
    hash: str
    type: ImageType | None = None
    confidence: float | None = None

    def to_dict(self) -> dict:
        data = asdict(self)
        if self.type is None:
            data.pop("type")
        if self.confidence is None:
            data.pop("confidence")
        return data
