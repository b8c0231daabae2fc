"""AI descriptions for surviving images and their merge back onto the results.

The description model is called in small batches and may answer out of
order, skip items, or repeat URLs. Results are joined back by canonical URL
(query string stripped); enrichment only ever adds metadata.
"""

import json
import logging

from app.core.exceptions import ParseFailure
from app.services.canonical import canonical_key, file_extension
from app.services.image_models import DedupedImage, EnrichmentResult, FinalImage
from app.services.llm import LLMClient, decode_json_object

logger = logging.getLogger(__name__)

# Formats the vision model accepts
ENRICHABLE_EXTENSIONS = {"png", "jpg", "jpeg", "gif", "webp"}

DESCRIBE_PROMPT = (
    "You are a SaaS marketing expert specialising in website and product images.\n\n"
    'Analyse each image in the JSON array below and return a JSON object with key "images".\n'
    "For every item output:\n"
    '  - "image_url": same URL you received (do not invent)\n'
    '  - "alt": detailed, marketing-ready alt text\n'
    '  - "type": "ui_screenshot" | "lifestyle"\n'
    '  - "confidence": 0-1 suitability for a product landing page\n\n'
    "Respond with JSON only, no markdown.\n\n"
    "### INPUT\n"
)


def select_enrichable(images: list[DedupedImage], limit: int = 5) -> list[DedupedImage]:
    """First ``limit`` images whose extension the vision model supports."""
    eligible = [img for img in images if file_extension(img.url) in ENRICHABLE_EXTENSIONS]
    return eligible[:limit]


def _clamp_confidence(value) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return min(1.0, max(0.0, float(value)))


def _parse_batch(reply: str, batch: list[DedupedImage]) -> list[EnrichmentResult]:
    decoded = decode_json_object(reply)
    if not decoded.ok:
        raise ParseFailure("Description reply could not be parsed", decoded.error)

    items = decoded.value.get("images")
    if not isinstance(items, list):
        raise ParseFailure("Description reply has no 'images' array")

    # When the reply lines up with the batch, repair missing URLs by position
    aligned = len(items) == len(batch)
    out: list[EnrichmentResult] = []
    for i, item in enumerate(items):
        if not isinstance(item, dict):
            continue
        url = item.get("image_url")
        if not isinstance(url, str) or not url.startswith("http"):
            if not aligned:
                continue
            url = batch[i].url
        alt = item.get("alt")
        out.append(
            EnrichmentResult(
                url=url,
                alt=alt if isinstance(alt, str) else "",
                type="lifestyle" if item.get("type") == "lifestyle" else "ui_screenshot",
                confidence=_clamp_confidence(item.get("confidence")),
            )
        )
    return out


async def describe_images(
    llm: LLMClient,
    images: list[DedupedImage],
    model: str,
    batch_size: int = 5,
) -> list[EnrichmentResult]:
    """Ask the vision model for alt text, type and confidence.

    A failed or unparseable batch contributes nothing; the other batches
    still run.
    """
    results: list[EnrichmentResult] = []
    batch_size = max(1, batch_size)

    for start in range(0, len(images), batch_size):
        batch = images[start : start + batch_size]
        payload = [
            {"image_url": img.url, "context": img.alt or img.context or ""}
            for img in batch
        ]
        content = [{"type": "text", "text": DESCRIBE_PROMPT + json.dumps(payload, indent=2)}]
        content.extend({"type": "image_url", "image_url": {"url": img.url}} for img in batch)

        try:
            reply = await llm.complete(
                model=model,
                messages=[{"role": "user", "content": content}],
                temperature=0.2,
                max_tokens=4096,
                json_object=True,
            )
            results.extend(_parse_batch(reply, batch))
        except ParseFailure as e:
            logger.warning(f"{e.message}: {e.details}")
        except Exception as e:
            logger.warning(f"Description batch failed: {type(e).__name__}: {e}")

    return results


def merge_enrichment(
    images: list[DedupedImage], results: list[EnrichmentResult]
) -> list[FinalImage]:
    """Attach descriptions to images by canonical URL, keeping input order.

    Later results for the same canonical URL overwrite earlier ones. Images
    without a match keep their harvested alt text (or "").
    """
    by_key: dict[str, EnrichmentResult] = {}
    for result in results:
        by_key[canonical_key(result.url)] = result

    final: list[FinalImage] = []
    for img in images:
        match = by_key.get(canonical_key(img.url))
        alt = (match.alt if match and match.alt else None) or img.alt or ""
        final.append(
            FinalImage(
                url=img.url,
                landing_page=img.landing_page,
                alt=alt,
                hash=img.fingerprint,
                type=match.type if match else None,
                confidence=match.confidence if match else None,
            )
        )
    return final
