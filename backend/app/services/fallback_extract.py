"""LLM fallback for pages where HTML harvesting finds no images."""

import logging

from app.core.exceptions import ParseFailure
from app.services.image_models import CandidateImage
from app.services.llm import LLMClient, decode_json_array

logger = logging.getLogger(__name__)


def _system_prompt(max_images: int) -> str:
    return (
        f"You are an HTML scraper. Extract up to {max_images} distinct image URLs "
        "that are likely product screenshots or UI mock-ups.\n"
        "Return a JSON array of absolute URLs only, no commentary."
    )


async def extract_image_urls(
    llm: LLMClient,
    html: str,
    base_url: str,
    model: str,
    max_images: int = 50,
    max_chars: int = 120_000,
) -> list[CandidateImage]:
    """Have the LLM list image URLs found in raw markup.

    Returned strings are taken as already absolute; anything that is not an
    http(s) URL is dropped. Parse failures yield an empty list.
    """
    if not html:
        return []

    reply = await llm.complete(
        model=model,
        messages=[
            {"role": "system", "content": _system_prompt(max_images)},
            {"role": "user", "content": f"BASE URL: {base_url}"},
            {"role": "user", "content": html[:max_chars]},
        ],
        temperature=0,
        max_tokens=600,
    )

    decoded = decode_json_array(reply)
    if not decoded.ok:
        failure = ParseFailure("Fallback extraction reply could not be parsed", decoded.error)
        logger.warning(f"{failure.message}: {failure.details}")
        return []

    out: list[CandidateImage] = []
    seen: set[str] = set()
    for url in decoded.value:
        url = url.strip()
        if not url.startswith(("http://", "https://")) or url in seen:
            continue
        seen.add(url)
        out.append(CandidateImage(url=url, landing_page=base_url))
        if len(out) >= max_images:
            break

    logger.info(f"Fallback extraction returned {len(out)} image URLs for {base_url}")
    return out
