"""Image extraction job orchestration.

validating -> fetching_home -> filtering_links -> fetching_subpages ->
harvesting -> deduplicating -> enriching -> completed, with any unhandled
error moving the job straight to failed. The job never retries itself;
only webhook delivery retries, and its failures never touch the result.
"""

import asyncio
import json
import logging
import time
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from urllib.parse import urlparse

import httpx
import sentry_sdk
from pydantic import ValidationError

from app.config import Settings, settings
from app.core.cache import PageCache
from app.core.exceptions import InvalidInputError, PipelineError, UpstreamFetchError
from app.core.metrics import (
    image_job_duration_seconds,
    image_jobs_total,
    images_returned_total,
    pipeline_stage_duration_seconds,
)
from app.middleware.request_id import job_id_var
from app.schemas.images import (
    ExtractImagesError,
    ExtractImagesRequest,
    ExtractImagesResponse,
    ImageOut,
    JobStartedEvent,
)
from app.services.enrichment import describe_images, merge_enrichment, select_enrichable
from app.services.fallback_extract import extract_image_urls
from app.services.firecrawl import (
    HOMEPAGE_FORMATS,
    SUBPAGE_FORMATS,
    FirecrawlClient,
    ScrapedPage,
)
from app.services.harvester import ImageHarvester
from app.services.image_dedup import SimilarityDeduplicator
from app.services.image_models import CandidateImage, FinalImage
from app.services.link_filter import prioritize_links
from app.services.llm import LLMClient
from app.services.quality_filter import QualityFilter
from app.services.webhook import send_webhook

logger = logging.getLogger(__name__)


class JobStage(str, Enum):
    VALIDATING = "validating"
    FETCHING_HOME = "fetching_home"
    FILTERING_LINKS = "filtering_links"
    FETCHING_SUBPAGES = "fetching_subpages"
    HARVESTING = "harvesting"
    DEDUPLICATING = "deduplicating"
    ENRICHING = "enriching"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class PipelineOptions:
    max_subpages: int = 4
    harvest_mode: str = "permissive"
    fallback_max_images: int = 50
    fallback_max_html_chars: int = 120_000
    dedup_limit: int = 50
    dedup_min_bytes: int = 20_000
    dedup_threshold: int = 8
    dedup_concurrency: int = 8
    dedup_max_bytes: int = 10 * 1024 * 1024
    image_fetch_timeout: float = 8.0
    min_dimension: int = 300
    probe_failure: str = "keep"
    enrich_max_images: int = 5
    enrich_batch_size: int = 5
    webhook_max_retries: int = 3
    webhook_timeout: float = 10.0
    link_filter_model: str = "gpt-4.1"
    fallback_model: str = "gpt-4o-mini"
    describe_model: str = "gpt-4o-mini"

    @classmethod
    def from_settings(cls, s: Settings = settings) -> "PipelineOptions":
        return cls(
            max_subpages=s.MAX_SUBPAGES,
            harvest_mode=s.HARVEST_FORMAT_MODE,
            fallback_max_images=s.FALLBACK_MAX_IMAGES,
            fallback_max_html_chars=s.FALLBACK_MAX_HTML_CHARS,
            dedup_limit=s.DEDUP_LIMIT,
            dedup_min_bytes=s.DEDUP_MIN_BYTES,
            dedup_threshold=s.DEDUP_HAMMING_THRESHOLD,
            dedup_concurrency=s.DEDUP_CONCURRENCY,
            dedup_max_bytes=s.DEDUP_MAX_BYTES,
            image_fetch_timeout=s.IMAGE_FETCH_TIMEOUT,
            min_dimension=s.MIN_IMAGE_DIMENSION,
            probe_failure=s.PROBE_FAILURE_POLICY,
            enrich_max_images=s.ENRICH_MAX_IMAGES,
            enrich_batch_size=s.ENRICH_BATCH_SIZE,
            webhook_max_retries=s.WEBHOOK_MAX_RETRIES,
            webhook_timeout=s.WEBHOOK_TIMEOUT,
            link_filter_model=s.LINK_FILTER_MODEL,
            fallback_model=s.FALLBACK_EXTRACT_MODEL,
            describe_model=s.DESCRIBE_MODEL,
        )


@dataclass
class Job:
    id: str
    source_url: str
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    status: str = "started"
    stage: JobStage = JobStage.VALIDATING


@dataclass
class JobOutcome:
    status_code: int
    body: dict


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _is_http_url(url: str) -> bool:
    try:
        parsed = urlparse(url)
    except ValueError:
        return False
    return parsed.scheme in ("http", "https") and bool(parsed.hostname)


def parse_request(raw: bytes | str | dict | None) -> ExtractImagesRequest:
    """Decode and validate a job submission body.

    Raises InvalidInputError with a caller-facing message.
    """
    if raw is None or (isinstance(raw, (bytes, str)) and not raw.strip()):
        raise InvalidInputError("body missing")

    data = raw
    if isinstance(raw, (bytes, str)):
        try:
            data = json.loads(raw)
        except ValueError as e:
            raise InvalidInputError("invalid JSON body", details=str(e)) from e
    if not isinstance(data, dict):
        raise InvalidInputError("body must be a JSON object")

    try:
        request = ExtractImagesRequest.model_validate(data)
    except ValidationError as e:
        first = e.errors()[0]
        field_name = ".".join(str(p) for p in first.get("loc", ()))
        raise InvalidInputError(
            "invalid request body", details=f"{field_name}: {first.get('msg')}"
        ) from e

    if not request.url:
        raise InvalidInputError("url missing")
    if not _is_http_url(request.url):
        raise InvalidInputError("url must start with http/https", details=request.url)
    if request.webhook_url and not _is_http_url(request.webhook_url):
        raise InvalidInputError(
            "webhook_url must start with http/https", details=request.webhook_url
        )
    return request


def _peek(raw, key: str) -> str | None:
    """Best-effort string field from a body that may fail validation."""
    data = raw
    if isinstance(raw, (bytes, str)):
        try:
            data = json.loads(raw)
        except ValueError:
            return None
    if isinstance(data, dict) and isinstance(data.get(key), str):
        return data[key].strip() or None
    return None


def _webhook_target(
    request: ExtractImagesRequest | None, raw_body
) -> tuple[str | None, str | None]:
    """Where to report the job's outcome.

    A body that failed validation still gets its failed event when it named
    a usable http(s) webhook URL.
    """
    if request is not None:
        return request.webhook_url, request.webhook_secret
    url = _peek(raw_body, "webhook_url")
    if url is None or not _is_http_url(url):
        return None, None
    return url, _peek(raw_body, "webhook_secret")


class ImagePipeline:
    """Runs one extraction job end to end.

    All collaborators are injected: the page fetcher, the homepage cache,
    the shared LLM client and the HTTP client used for image downloads,
    dimension probes and webhooks.
    """

    def __init__(
        self,
        fetcher: FirecrawlClient,
        cache: PageCache,
        llm: LLMClient,
        http: httpx.AsyncClient,
        options: PipelineOptions | None = None,
    ):
        self.fetcher = fetcher
        self.cache = cache
        self.llm = llm
        self.http = http
        self.options = options or PipelineOptions()
        self.harvester = ImageHarvester(mode=self.options.harvest_mode)

    @contextmanager
    def _stage(self, job: Job, stage: JobStage):
        job.stage = stage
        logger.info(f"Job {job.id} -> {stage.value}")
        start = time.monotonic()
        try:
            yield
        finally:
            pipeline_stage_duration_seconds.labels(stage=stage.value).observe(
                time.monotonic() - start
            )

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    async def _fetch_homepage(self, url: str, force_refresh: bool) -> ScrapedPage:
        async def fetch() -> dict:
            page = await self.fetcher.scrape(
                url,
                formats=HOMEPAGE_FORMATS,
                only_main_content=False,
                cache_bypass=force_refresh,
            )
            return page.to_dict()

        data = await self.cache.get_or_fetch(url, fetch, force_refresh=force_refresh)
        return ScrapedPage.from_dict(data)

    async def _filter_links(self, source_url: str, links: list[str]) -> list[str]:
        candidates = [
            link for link in links if link.rstrip("/") != source_url.rstrip("/")
        ]
        try:
            return await prioritize_links(
                self.llm,
                candidates,
                model=self.options.link_filter_model,
                top_k=self.options.max_subpages,
            )
        except Exception as e:
            logger.warning(f"Link prioritization failed, scraping homepage only: {e}")
            return []

    async def _fetch_subpage(self, link: str, force_refresh: bool) -> tuple[str, str]:
        try:
            page = await self.fetcher.scrape(
                link,
                formats=SUBPAGE_FORMATS,
                only_main_content=True,
                cache_bypass=force_refresh,
            )
        except UpstreamFetchError as e:
            logger.warning(f"Sub-page {link} skipped: {e.message} ({e.details})")
            return link, ""
        return link, page.raw_html

    async def _harvest(
        self, job: Job, documents: list[tuple[str, str]]
    ) -> list[CandidateImage]:
        candidates: list[CandidateImage] = []
        for page_url, html in documents:
            candidates.extend(self.harvester.harvest(html, page_url))

        if candidates:
            return candidates

        logger.info(f"No images harvested for {job.source_url}, using LLM fallback")
        combined = "\n".join(html for _, html in documents if html)
        try:
            return await extract_image_urls(
                self.llm,
                combined,
                job.source_url,
                model=self.options.fallback_model,
                max_images=self.options.fallback_max_images,
                max_chars=self.options.fallback_max_html_chars,
            )
        except Exception as e:
            logger.warning(f"Fallback extraction failed: {e}")
            return []

    async def _execute(self, job: Job, request: ExtractImagesRequest) -> list[FinalImage]:
        opts = self.options

        with self._stage(job, JobStage.FETCHING_HOME):
            homepage = await self._fetch_homepage(job.source_url, request.force_refresh)

        with self._stage(job, JobStage.FILTERING_LINKS):
            kept_links = await self._filter_links(job.source_url, homepage.links)
            logger.info(f"Kept {len(kept_links)} sub-pages: {kept_links}")

        with self._stage(job, JobStage.FETCHING_SUBPAGES):
            subpages = await asyncio.gather(
                *(self._fetch_subpage(link, request.force_refresh) for link in kept_links)
            )

        with self._stage(job, JobStage.HARVESTING):
            documents = [(job.source_url, homepage.raw_html), *subpages]
            candidates = await self._harvest(job, documents)
            logger.info(f"Harvested {len(candidates)} candidates")

        with self._stage(job, JobStage.DEDUPLICATING):
            deduper = SimilarityDeduplicator(
                self.http,
                limit=opts.dedup_limit,
                min_bytes=opts.dedup_min_bytes,
                threshold=opts.dedup_threshold,
                concurrency=opts.dedup_concurrency,
                fetch_timeout=opts.image_fetch_timeout,
                max_bytes=opts.dedup_max_bytes,
            )
            unique = await deduper.dedupe(candidates)
            quality = QualityFilter(
                self.http,
                min_dimension=opts.min_dimension,
                probe_failure=opts.probe_failure,
                probe_timeout=opts.image_fetch_timeout,
            )
            filtered = await quality.filter(unique)

        with self._stage(job, JobStage.ENRICHING):
            eligible = select_enrichable(filtered, limit=opts.enrich_max_images)
            results = []
            if eligible:
                results = await describe_images(
                    self.llm,
                    eligible,
                    model=opts.describe_model,
                    batch_size=opts.enrich_batch_size,
                )
            return merge_enrichment(filtered, results)

    # ------------------------------------------------------------------
    # Webhooks
    # ------------------------------------------------------------------

    async def _notify(self, url: str | None, secret: str | None, payload: dict) -> None:
        if not url:
            return
        try:
            await send_webhook(
                url,
                payload,
                secret=secret,
                max_retries=self.options.webhook_max_retries,
                timeout=self.options.webhook_timeout,
                client=self.http,
            )
        except PipelineError as e:
            logger.warning(f"{e.message}: {e.details}")
        except Exception as e:
            logger.error(f"Webhook delivery crashed: {type(e).__name__}: {e}")

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    async def run(self, raw_body: bytes | str | dict | None) -> JobOutcome:
        """Run a job from a raw submission body and return (status, payload).

        Never raises: every failure becomes a structured 400 payload.
        """
        start = time.monotonic()
        job = Job(
            id=_peek(raw_body, "job_id") or str(uuid.uuid4()),
            source_url=_peek(raw_body, "url") or "",
        )
        token = job_id_var.set(job.id)
        try:
            request, outcome, started_task = await self._run_job(job, raw_body, start)
            if started_task is not None:
                await started_task
            hook_url, hook_secret = _webhook_target(request, raw_body)
            await self._notify(hook_url, hook_secret, outcome.body)
        finally:
            job_id_var.reset(token)

        image_jobs_total.labels(status=job.status).inc()
        image_job_duration_seconds.observe(time.monotonic() - start)
        return outcome

    async def _run_job(self, job: Job, raw_body, start: float):
        request: ExtractImagesRequest | None = None
        started_task: asyncio.Task | None = None

        try:
            with self._stage(job, JobStage.VALIDATING):
                request = parse_request(raw_body)
                job.source_url = request.url

            if request.webhook_url:
                started = JobStartedEvent(
                    job_id=job.id,
                    source_url=job.source_url,
                    started_at=job.started_at.isoformat(),
                    message=f"Extracting images from {job.source_url}",
                )
                started_task = asyncio.create_task(
                    self._notify(
                        request.webhook_url, request.webhook_secret, started.model_dump()
                    )
                )

            images = await self._execute(job, request)

            job.status = "completed"
            job.stage = JobStage.COMPLETED
            elapsed_ms = int((time.monotonic() - start) * 1000)
            body = ExtractImagesResponse(
                job_id=job.id,
                source_url=job.source_url,
                generated_at=_now_iso(),
                processing_time_ms=elapsed_ms,
                images=[ImageOut(**img.to_dict()) for img in images],
            ).model_dump(exclude_none=True)
            images_returned_total.inc(len(images))
            logger.info(f"Job {job.id} completed with {len(images)} images in {elapsed_ms}ms")
            return request, JobOutcome(status_code=200, body=body), started_task

        except Exception as e:
            job.status = "failed"
            failed_at = job.stage
            job.stage = JobStage.FAILED
            if isinstance(e, PipelineError):
                message, details = e.message, e.details
            else:
                message, details = str(e) or "unexpected error", type(e).__name__

            if isinstance(e, InvalidInputError):
                logger.info(f"Job {job.id} rejected: {message}")
            else:
                logger.error(
                    f"Job {job.id} failed during {failed_at.value}: {message}",
                    exc_info=True,
                )
                sentry_sdk.capture_exception(e)

            error = ExtractImagesError(
                job_id=job.id,
                source_url=job.source_url or None,
                generated_at=_now_iso(),
                processing_time_ms=int((time.monotonic() - start) * 1000),
                error=message,
                details=details,
            )
            body = error.model_dump(exclude={"details"} if details is None else None)
            return request, JobOutcome(status_code=400, body=body), started_task


def create_pipeline(
    http: httpx.AsyncClient,
    llm: LLMClient,
    store,
    options: PipelineOptions | None = None,
) -> ImagePipeline:
    """Wire a pipeline from settings around shared process resources."""
    fetcher = FirecrawlClient(
        http,
        api_key=settings.FIRECRAWL_API_KEY,
        api_url=settings.FIRECRAWL_API_URL,
        timeout=settings.FIRECRAWL_TIMEOUT,
    )
    cache = PageCache(
        store, ttl=settings.PAGE_CACHE_TTL_SECONDS, enabled=settings.CACHE_ENABLED
    )
    return ImagePipeline(
        fetcher=fetcher,
        cache=cache,
        llm=llm,
        http=http,
        options=options or PipelineOptions.from_settings(),
    )
