"""
External product matcher clients.

The matching heuristics live in the external system; this module only
sends record keys and reads back which ones matched.
"""

from abc import ABC, abstractmethod

import requests
from pydantic import BaseModel, Field

from catalog_ingest.core.exceptions import MatcherError
from catalog_ingest.core.models import RecordKey
from catalog_ingest.observability.logger import get_logger

logger = get_logger(__name__)


class Match(BaseModel):
    record_id: int
    external_id: str


class MatchResult(BaseModel):
    """
    Outcome of one batch.

    Records neither matched nor failed count as unmatched.
    """

    matched: list[Match] = Field(default_factory=list)
    failed: list[int] = Field(default_factory=list)


class ProductMatcher(ABC):
    @abstractmethod
    def match_batch(self, keys: list[RecordKey]) -> MatchResult:
        """
        Match a batch of records against the external catalog.

        Raises:
            MatcherError: If the whole batch could not be processed
        """


class NullProductMatcher(ProductMatcher):
    """Used when no matcher endpoint is configured: nothing matches."""

    def match_batch(self, keys: list[RecordKey]) -> MatchResult:
        return MatchResult()


class HttpProductMatcher(ProductMatcher):
    """
    Posts record keys as JSON to a matcher service.

    Request body:
        {"records": [{"record_id": 1, "part_number": "...", "manufacturer": "...", "description": "..."}]}

    Response body:
        {"matched": [{"record_id": 1, "external_id": "gid://..."}], "failed": [2]}
    """

    def __init__(self, endpoint: str, timeout: float = 30.0, session: requests.Session | None = None):
        """
        Initialize HTTP matcher.

        Args:
            endpoint: Full URL of the batch match endpoint
            timeout: Request timeout in seconds
            session: Pre-configured requests session (auth headers, retries)
        """
        self.endpoint = endpoint
        self.timeout = timeout
        self.session = session or requests.Session()

    def match_batch(self, keys: list[RecordKey]) -> MatchResult:
        payload = {"records": [key.model_dump() for key in keys]}
        try:
            response = self.session.post(
                self.endpoint,
                json=payload,
                headers={"Accept": "application/json"},
                timeout=self.timeout,
            )
            response.raise_for_status()
            body = response.json()
        except requests.RequestException as e:
            raise MatcherError(f"Matcher request failed: {e}") from e
        except ValueError as e:
            raise MatcherError(f"Matcher returned invalid JSON: {e}") from e

        requested = {key.record_id for key in keys}
        result = MatchResult.model_validate(body)
        unknown = [m.record_id for m in result.matched if m.record_id not in requested]
        if unknown:
            logger.warning(f"Matcher returned ids that were not requested: {unknown}")
            result.matched = [m for m in result.matched if m.record_id in requested]
        return result


def create_matcher(settings) -> ProductMatcher:
    if settings.matcher_url:
        return HttpProductMatcher(settings.matcher_url, timeout=settings.matcher_timeout_seconds)
    return NullProductMatcher()
