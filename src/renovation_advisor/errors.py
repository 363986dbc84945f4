import httpx
import requests

RETRYABLE_STATUS_CODES = {408, 425, 429, 500, 502, 503, 504}


class PipelineError(Exception):
    """Base class for failures raised inside a pipeline stage."""

    def __init__(self, message: str = "", retryable: bool = False):
        super().__init__(message)
        self.retryable = retryable


class TranscriptionError(PipelineError):
    pass


class ExtractionError(PipelineError):
    pass


class NotFoundError(PipelineError):
    pass


def is_transient(exc: BaseException) -> bool:
    """True for network failures and upstream 5xx/429 answers worth another attempt."""
    if getattr(exc, "retryable", False):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code in RETRYABLE_STATUS_CODES
    if isinstance(exc, httpx.TransportError):
        return True
    if isinstance(exc, (requests.ConnectionError, requests.Timeout)):
        return True
    if isinstance(exc, requests.HTTPError) and exc.response is not None:
        return exc.response.status_code in RETRYABLE_STATUS_CODES
    return False
