"""Ask the LLM which homepage links are most likely to show product imagery."""

import json
import logging

from app.core.exceptions import ParseFailure
from app.services.llm import LLMClient, decode_json_array

logger = logging.getLogger(__name__)

FILTER_SYSTEM_PROMPT = """
You are a SaaS marketing expert.

Your task is to find pages that are most likely to include product images. Product images are visual representations of the SaaS interface, widgets, or embeds as seen by users or in mockups (e.g. dashboards, social media feeds, review widgets, or galleries).

Input:
- Homepage links

1. Analyse the list of links submitted

2. Remove all links that won't have any product images. Common examples:
- Legal and compliance: privacy policy, terms, GDPR, DPA, security
- Company info: about us, contact, team, press, investor relations
- Account/CTA pages: login, sign up, free trial, book a demo, subscribe, referrals
- Third-party or social links: Facebook, LinkedIn, Instagram, YouTube, Twitter, etc.
- Resources and educational content: blog posts, case studies, templates, playbooks, webinars, events
- Developer tools: API docs, integration pages, developer portals
- Localization: alternate language or country-specific versions
- Pricing: plans, pricing pages

3. List the remaining links in priority order, most likely to include product images first.

Important instructions:
- Exclude the homepage (e.g. https://example.com/) from the final output
- Only include pages with marketing-grade product images
- If multiple links start with /compare/, keep only the most general comparison page
- Ignore URLs that only differ by # fragment

Answer with a JSON array only, no extra text.
"""


async def prioritize_links(
    llm: LLMClient, links: list[str], model: str, top_k: int = 4
) -> list[str]:
    """Return at most ``top_k`` links in the model's priority order.

    An unparseable reply yields an empty list so nothing further is scraped.
    """
    if not links or top_k <= 0:
        return []

    reply = await llm.complete(
        model=model,
        messages=[
            {"role": "system", "content": FILTER_SYSTEM_PROMPT.strip()},
            {"role": "user", "content": json.dumps(links)},
        ],
        temperature=0.2,
    )

    decoded = decode_json_array(reply)
    if not decoded.ok:
        failure = ParseFailure("Link filter reply could not be parsed", decoded.error)
        logger.warning(f"{failure.message}: {failure.details} (reply={reply[:200]!r})")
        return []

    kept = [link for link in decoded.value if link.startswith(("http://", "https://"))]
    return kept[:top_k]
