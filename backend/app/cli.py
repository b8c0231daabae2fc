"""CLI tool for ProductShots: run an image extraction job from the terminal.

Usage:
    python -m app.cli extract https://example.com
    python -m app.cli extract https://example.com --force-refresh
    python -m app.cli extract https://example.com --webhook-url https://hooks.example.com/x
    python -m app.cli -o text extract https://example.com
"""

import argparse
import asyncio
import json
import logging
import sys

import httpx


def _setup_logging(verbose: bool = False):
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        stream=sys.stderr,
    )


async def _cmd_extract(args) -> int:
    """Run one extraction job and print its payload."""
    from app.core.redis import redis_client
    from app.services.llm import get_llm_client
    from app.services.pipeline import create_pipeline

    body = {"url": args.url, "force_refresh": args.force_refresh}
    if args.webhook_url:
        body["webhook_url"] = args.webhook_url
    if args.job_id:
        body["job_id"] = args.job_id

    async with httpx.AsyncClient() as http:
        pipeline = create_pipeline(http=http, llm=get_llm_client(), store=redis_client)
        try:
            outcome = await pipeline.run(body)
        finally:
            await redis_client.close()

    if args.output == "text":
        payload = outcome.body
        if outcome.status_code != 200:
            print(f"FAILED: {payload['error']}", file=sys.stderr)
            if payload.get("details"):
                print(f"  {payload['details']}", file=sys.stderr)
        else:
            print(
                f"{len(payload['images'])} images from {payload['source_url']} "
                f"in {payload['processing_time_ms']}ms"
            )
            for img in payload["images"]:
                print(f"  {img['url']}")
                if img.get("alt"):
                    print(f"    {img['alt'][:120]}")
    else:
        print(json.dumps(outcome.body, indent=2, ensure_ascii=False))

    return 0 if outcome.status_code == 200 else 1


def main():
    parser = argparse.ArgumentParser(
        prog="productshots",
        description="ProductShots CLI: extract product images from a website",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    parser.add_argument(
        "-o", "--output", default="json",
        choices=["json", "text"],
        help="Output format (default: json)",
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    extract_parser = subparsers.add_parser("extract", help="Extract images from a URL")
    extract_parser.add_argument("url", help="Website homepage URL")
    extract_parser.add_argument(
        "--force-refresh", action="store_true", help="Ignore the cached homepage"
    )
    extract_parser.add_argument("--webhook-url", default=None, help="Lifecycle webhook URL")
    extract_parser.add_argument("--job-id", default=None, help="Explicit job id")

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    _setup_logging(args.verbose)

    if args.command == "extract":
        sys.exit(asyncio.run(_cmd_extract(args)))


if __name__ == "__main__":
    main()
