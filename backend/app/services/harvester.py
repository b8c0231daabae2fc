"""Harvest candidate image references from raw HTML.

Sources, in order: <img> (src, then lazy-load attributes), the first entry
of <source srcset>, inline background-image styles, og:image, and <img>
tags inside <noscript> fallbacks.
"""

import logging
import re
from urllib.parse import urlparse

from bs4 import BeautifulSoup, Tag

from app.services.canonical import file_extension, resolve_url
from app.services.image_models import CandidateImage

logger = logging.getLogger(__name__)

# Path tokens that mark a non-product asset
NON_PRODUCT_RE = re.compile(
    r"(sprite|icon|logo|favicon|avatar|testimonial)", re.IGNORECASE
)

# Extensions accepted in strict mode
STRICT_EXTENSIONS = {"png", "jpg", "jpeg", "gif", "webp", "avif"}

_LAZY_ATTRS = ("src", "data-src", "data-original", "data-lazy")
_BACKGROUND_RE = re.compile(
    r"background-image\s*:\s*url\(\s*[\"']?(.*?)[\"']?\s*\)", re.IGNORECASE
)
_CONTEXT_CHARS = 120


def is_non_product_asset(url: str) -> bool:
    """True when the URL path names an icon/logo/sprite/avatar-style asset."""
    try:
        path = urlparse(url).path
    except ValueError:
        return True
    return bool(NON_PRODUCT_RE.search(path))


def first_srcset_url(srcset: str) -> str:
    """Return the URL of the first candidate in a srcset list."""
    first = srcset.split(",")[0].strip()
    return first.split(" ")[0] if first else ""


def _context_for(img: Tag) -> str | None:
    parent = img.parent
    if parent is None:
        return None
    text = parent.get_text(" ", strip=True)
    return text[:_CONTEXT_CHARS] or None


class ImageHarvester:
    """Collects CandidateImages from a single HTML document.

    ``mode`` is "permissive" (accept any URL, format judged later by the
    response Content-Type) or "strict" (require an allowed file extension).
    """

    def __init__(self, mode: str = "permissive"):
        if mode not in ("permissive", "strict"):
            raise ValueError(f"Unknown harvest mode: {mode!r}")
        self.mode = mode

    def harvest(self, html: str, page_url: str) -> list[CandidateImage]:
        if not html:
            return []

        soup = BeautifulSoup(html, "lxml")
        out: list[CandidateImage] = []
        seen: set[str] = set()

        def push(raw: str | None, alt: str | None = None, context: str | None = None):
            url = resolve_url(raw, page_url)
            if url is None:
                return
            if is_non_product_asset(url):
                return
            if self.mode == "strict" and file_extension(url) not in STRICT_EXTENSIONS:
                return
            if url in seen:
                return
            seen.add(url)
            out.append(
                CandidateImage(url=url, landing_page=page_url, alt=alt, context=context)
            )

        for img in soup.find_all("img"):
            if img.find_parent("noscript") is not None:
                continue
            alt = img.get("alt")
            context = _context_for(img)
            for attr in _LAZY_ATTRS:
                push(img.get(attr), alt, context)

        for source in soup.find_all("source"):
            srcset = source.get("srcset") or source.get("data-srcset") or ""
            first = first_srcset_url(srcset)
            if first:
                push(first)

        for el in soup.find_all(style=re.compile("background-image", re.IGNORECASE)):
            match = _BACKGROUND_RE.search(el.get("style", ""))
            if match and match.group(1):
                push(match.group(1))

        og = soup.find("meta", attrs={"property": "og:image"})
        if og is not None and og.get("content"):
            push(og["content"])

        for noscript in soup.find_all("noscript"):
            imgs = noscript.find_all("img")
            if not imgs:
                # Contents kept as raw text in <head> or by some parsers
                imgs = BeautifulSoup(noscript.get_text(), "lxml").find_all("img")
            for img in imgs:
                push(img.get("src") or img.get("data-src"), img.get("alt"))

        logger.debug(f"Harvested {len(out)} candidate images from {page_url}")
        return out
