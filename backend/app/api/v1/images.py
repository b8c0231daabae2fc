import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from app.api.deps import get_pipeline
from app.schemas.images import ExtractImagesError, ExtractImagesResponse
from app.services.pipeline import ImagePipeline

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post(
    "/extract",
    summary="Extract product images from a website",
    description="Fetch the homepage (cached for 24h unless force_refresh is set), let an LLM pick the sub-pages most likely to show the product, harvest and deduplicate images, and return a small ranked list with AI-generated alt text. Failures are reported as structured 400 payloads. An optional webhook_url receives started/completed/failed events.",
    response_description="Deduplicated product images with job metadata",
    responses={
        200: {"model": ExtractImagesResponse},
        400: {"model": ExtractImagesError},
    },
)
async def extract_images(
    request: Request,
    pipeline: ImagePipeline = Depends(get_pipeline),
):
    """Run one extraction job synchronously."""
    # Raw body so that malformed input reaches the job's error boundary
    body = await request.body()
    outcome = await pipeline.run(body)
    return JSONResponse(content=outcome.body, status_code=outcome.status_code)
