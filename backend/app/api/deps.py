import httpx
from fastapi import Request

from app.core.redis import redis_client
from app.services.llm import get_llm_client
from app.services.pipeline import ImagePipeline, create_pipeline


def get_http_client(request: Request) -> httpx.AsyncClient:
    """Shared HTTP client created in the app lifespan."""
    return request.app.state.http_client


def get_pipeline(request: Request) -> ImagePipeline:
    return create_pipeline(
        http=get_http_client(request),
        llm=get_llm_client(),
        store=redis_client,
    )
