from __future__ import annotations

from palace.ill.api.settings import TargetSettings
from palace.ill.api.sru.parser import SRUResponse, SRUResponseParser
from palace.ill.api.sru.query import SearchQuery
from palace.ill.core.exceptions import PalaceValueError
from palace.ill.util.http import HTTP
from palace.ill.util.log import LoggerMixin


class SRUClient(LoggerMixin):
    """Talks SRU 1.2 to a single target."""

    VERSION = "1.2"
    RECORD_SCHEMA = "marcxml"

    def __init__(
        self,
        name: str,
        settings: TargetSettings,
        timeout: float = HTTP.DEFAULT_REQUEST_TIMEOUT,
        max_retry_count: int = 0,
        parser: SRUResponseParser | None = None,
    ) -> None:
        if settings.search_url is None:
            raise PalaceValueError(f"Target '{name}' has no search endpoint.")
        self.name = name
        self.url = settings.search_url
        self.timeout = timeout
        self.max_retry_count = max_retry_count
        self.parser = parser or SRUResponseParser()

    def params(self, query: SearchQuery, page_size: int) -> dict[str, str | int]:
        return {
            "operation": "searchRetrieve",
            "version": self.VERSION,
            "recordSchema": self.RECORD_SCHEMA,
            "query": query.to_cql(),
            "startRecord": query.start_record(page_size),
            "maximumRecords": page_size,
        }

    def search(self, query: SearchQuery, page_size: int) -> SRUResponse:
        """Run the query and parse the response.

        :raise RemoteIntegrationException: If the target could not be
            reached or answered with a non-success status.
        :raise MalformedResponse: If the response body is not an SRU response.
        """
        response = HTTP.get_with_timeout(
            self.url,
            params=self.params(query, page_size),
            timeout=self.timeout,
            max_retry_count=self.max_retry_count,
            allowed_response_codes=["2xx"],
        )
        return self.parser.parse(response.content)
