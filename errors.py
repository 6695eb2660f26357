"""Exception types shared by the fetch layer and the ingestion run."""

from typing import Optional


class PipelineError(Exception):
    """Base class for errors raised by the ingestion pipeline."""


class FetchError(PipelineError):
    """A page could not be fetched and retrying will not help."""

    def __init__(self, url: str, message: str = "", status: Optional[int] = None):
        self.url = url
        self.status = status
        super().__init__(message or f"fetch failed for {url}")


class TransientFetchError(FetchError):
    """Rate limit, connection reset or server error; worth retrying."""


class FetchTimeout(TransientFetchError):
    pass


class FetchBlocked(FetchError):
    """The site answered with a block or challenge page. Back off."""


class CredentialsError(PipelineError):
    """Fetch-service credentials are missing or malformed."""


class ConsecutiveFailureAbort(PipelineError):
    """Too many detail failures in a row; the batch stops here."""

    def __init__(self, count: int):
        self.count = count
        super().__init__(f"aborting after {count} consecutive failures")
