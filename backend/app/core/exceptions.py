"""Error taxonomy for the image extraction pipeline.

Only InvalidInputError (and anything unexpected) fails a job. The other
categories are caught by the component that raises them and degrade to
fewer or lower-quality results.
"""


class PipelineError(Exception):
    """Base class carrying a human-readable message and optional details."""

    def __init__(self, message: str, details: str | None = None):
        self.message = message
        self.details = details
        super().__init__(message)


class InvalidInputError(PipelineError):
    """Missing or malformed request body / URL. Terminal, reported as 400."""


class UpstreamFetchError(PipelineError):
    """The page-fetch collaborator failed for a URL."""

    def __init__(
        self, message: str, details: str | None = None, status_code: int | None = None
    ):
        self.status_code = status_code
        super().__init__(message, details)


class CandidateFetchError(PipelineError):
    """A single image candidate could not be retrieved."""


class ParseFailure(PipelineError):
    """An LLM reply could not be decoded into the expected shape."""


class StorageError(PipelineError):
    """Page cache read or write failed."""


class WebhookDeliveryError(PipelineError):
    """Webhook delivery exhausted its retry budget."""

    def __init__(self, url: str, attempts: int, last_error: str | None = None):
        self.url = url
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            f"Webhook to {url} failed after {attempts} attempts",
            details=last_error,
        )
