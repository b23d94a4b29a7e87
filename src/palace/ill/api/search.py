from __future__ import annotations

from collections.abc import Callable, Mapping
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from pymarc import Record
from pymarc.exceptions import PymarcException
from sqlalchemy.exc import SQLAlchemyError

from palace.ill.api.interfaces import StagingArea
from palace.ill.api.settings import IllBrokerConfiguration, TargetSettings
from palace.ill.api.sru.client import SRUClient
from palace.ill.api.sru.parser import MalformedResponse, SRUResponse
from palace.ill.api.sru.query import MissingQuery, SearchQuery
from palace.ill.service.logging.configuration import LogLevel
from palace.ill.util.http import (
    BadResponseException,
    RemoteIntegrationException,
    RequestNetworkException,
    RequestTimedOut,
)
from palace.ill.util.log import LoggerMixin, log_elapsed_time, pluralize


class SearchErrorType(StrEnum):
    CONNECTION_FAILED = "connection-failed"
    TIMEOUT = "timeout"
    TRANSFORM_ERROR = "transform-error"
    OTHER = "other"


@dataclass(frozen=True)
class TargetError:
    """Something went wrong searching one target. The other targets'
    results are unaffected."""

    target: str
    type: SearchErrorType
    message: str

    def as_dict(self) -> dict[str, str]:
        return {"target": self.target, "type": self.type.value, "message": self.message}


def _subfield(record: Record, tag: str, code: str) -> str | None:
    for marc_field in record.get_fields(tag):
        for value in marc_field.get_subfields(code):
            if value and value.strip():
                return value.strip()
    return None


@dataclass(frozen=True)
class SearchResult:
    target: str
    title: str | None
    author: str | None
    # Handed back by the host to import the record.
    staging_reference: str
    isbn: str | None = None
    lccn: str | None = None
    remote_id: str | None = None

    @classmethod
    def from_record(
        cls,
        target: str,
        record: Record,
        staging_reference: str,
        remote_id_tag: str = "999",
        remote_id_subfield: str = "c",
    ) -> SearchResult:
        title = " ".join(
            part
            for part in (_subfield(record, "245", "a"), _subfield(record, "245", "b"))
            if part
        ).rstrip(" /:;,")
        author = (
            _subfield(record, "100", "a")
            or _subfield(record, "110", "a")
            or _subfield(record, "245", "c")
        )
        return cls(
            target=target,
            title=title or None,
            author=author,
            staging_reference=staging_reference,
            isbn=_subfield(record, "020", "a"),
            lccn=_subfield(record, "010", "a"),
            remote_id=_subfield(record, remote_id_tag, remote_id_subfield),
        )

    def as_dict(self) -> dict[str, str | None]:
        return {
            "target": self.target,
            "title": self.title,
            "author": self.author,
            "breedingid": self.staging_reference,
            "isbn": self.isbn,
            "lccn": self.lccn,
            "remote_id": self.remote_id,
        }


@dataclass(frozen=True)
class Paging:
    page: int
    page_size: int
    has_next: bool
    has_previous: bool

    @classmethod
    def estimate(cls, page: int, page_size: int, counts: list[int]) -> Paging:
        """Guess whether there are pages either side of this one.

        Targets don't agree on result counts, so this only looks at how
        many records came back. A full page from any target suggests there
        is another page, and a previous page is shown when the records
        returned fall short of this page's offset. It can be wrong both ways:
        results that end exactly on a page boundary still show a next page,
        and a full page after the first shows no previous one.
        """
        offset = (page - 1) * page_size
        returned = max(counts, default=0)
        return cls(
            page=page,
            page_size=page_size,
            has_next=any(count == page_size for count in counts),
            has_previous=offset - returned >= 1,
        )

    def as_dict(self) -> dict[str, int | bool]:
        return {
            "page": self.page,
            "page_size": self.page_size,
            "has_next": self.has_next,
            "has_previous": self.has_previous,
        }


@dataclass
class SearchResults:
    results: list[SearchResult] = field(default_factory=list)
    errors: list[TargetError] = field(default_factory=list)
    paging: Paging | None = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "results": [result.as_dict() for result in self.results],
            "errors": [error.as_dict() for error in self.errors],
            "paging": self.paging.as_dict() if self.paging else None,
        }


@dataclass
class _TargetOutcome:
    records: list[Record] = field(default_factory=list)
    errors: list[TargetError] = field(default_factory=list)
    # Why each unreadable record could not be read.
    unreadable: list[str] = field(default_factory=list)
    # Records in the response, readable or not.
    returned: int = 0


ClientFactory = Callable[..., SRUClient]


class RemoteCatalogSearch(LoggerMixin):
    """Search every configured target at once and merge the results.

    Each target is searched on its own worker thread, subject to its own
    timeout. Failures are recorded against the target they happened on
    and never stop the other searches. Found records are staged on the
    calling thread, since the staging area is not thread-safe.
    """

    def __init__(
        self,
        configuration: IllBrokerConfiguration,
        staging: StagingArea,
        client_factory: ClientFactory = SRUClient,
    ) -> None:
        self.configuration = configuration
        self.staging = staging
        self.client_factory = client_factory

    @log_elapsed_time(log_level=LogLevel.info, message_prefix="Remote catalog search")
    def search(
        self,
        query: SearchQuery,
        targets: Mapping[str, TargetSettings] | None = None,
    ) -> SearchResults:
        """Search the given targets, or every searchable target.

        :raise MissingQuery: If the query has no search terms. Nothing
            is sent to any target in that case.
        """
        if query.is_empty:
            raise MissingQuery("A search needs at least one search term.")

        if targets is None:
            targets = self.configuration.search_targets
        names = sorted(name for name, target in targets.items() if target.can_search)
        page_size = self.configuration.page_size

        outcomes: dict[str, _TargetOutcome] = {}
        if names:
            with ThreadPoolExecutor(
                max_workers=len(names), thread_name_prefix="ill-search"
            ) as executor:
                futures: dict[str, Future[_TargetOutcome]] = {
                    name: executor.submit(
                        self._search_target, name, targets[name], query, page_size
                    )
                    for name in names
                }
                for name in names:
                    outcomes[name] = futures[name].result()

        results = SearchResults()
        for name in names:
            outcome = outcomes[name]
            results.results.extend(self._stage(name, outcome))
            results.errors.extend(outcome.errors)
            if outcome.unreadable:
                self.log.warning(
                    f"Target {name} returned "
                    f"{pluralize(len(outcome.unreadable), 'unreadable record')}."
                )
                results.errors.append(
                    TargetError(
                        name,
                        SearchErrorType.TRANSFORM_ERROR,
                        "; ".join(outcome.unreadable),
                    )
                )

        results.paging = Paging.estimate(
            query.page, page_size, [outcome.returned for outcome in outcomes.values()]
        )
        self.log.info(
            f"Found {pluralize(len(results.results), 'record')} on "
            f"{pluralize(len(names), 'target')} "
            f"with {pluralize(len(results.errors), 'error')}."
        )
        return results

    def _search_target(
        self, name: str, target: TargetSettings, query: SearchQuery, page_size: int
    ) -> _TargetOutcome:
        outcome = _TargetOutcome()
        try:
            client = self.client_factory(
                name,
                target,
                timeout=self.configuration.search_timeout,
                max_retry_count=self.configuration.max_retry_count,
            )
            response = client.search(query, page_size)
        except RequestTimedOut as e:
            outcome.errors.append(self._error(name, SearchErrorType.TIMEOUT, e))
        except BadResponseException as e:
            outcome.errors.append(
                TargetError(name, SearchErrorType.OTHER, e.status_line)
            )
            self.log.warning(f"Target {name} answered {e.status_line}.")
        except RequestNetworkException as e:
            outcome.errors.append(
                self._error(name, SearchErrorType.CONNECTION_FAILED, e)
            )
        except MalformedResponse as e:
            outcome.errors.append(
                self._error(name, SearchErrorType.TRANSFORM_ERROR, e)
            )
        except RemoteIntegrationException as e:
            outcome.errors.append(self._error(name, SearchErrorType.OTHER, e))
        except Exception as e:
            self.log.exception(f"Unexpected error searching target {name}.")
            outcome.errors.append(TargetError(name, SearchErrorType.OTHER, str(e)))
        else:
            self._collect(name, response, outcome)
        return outcome

    def _collect(self, name: str, response: SRUResponse, outcome: _TargetOutcome) -> None:
        for diagnostic in response.diagnostics:
            error_type = (
                SearchErrorType.CONNECTION_FAILED
                if diagnostic.is_unavailable
                else SearchErrorType.OTHER
            )
            outcome.errors.append(TargetError(name, error_type, str(diagnostic)))
            self.log.warning(f"Target {name} returned diagnostic {diagnostic}.")

        outcome.unreadable.extend(response.bad_records)
        outcome.records = response.records
        outcome.returned = len(response.records) + len(response.bad_records)

    def _stage(self, name: str, outcome: _TargetOutcome) -> list[SearchResult]:
        staged = []
        for record in outcome.records:
            record.force_utf8 = True
            try:
                marc = record.as_marc()
            except (PymarcException, UnicodeError, ValueError) as e:
                outcome.unreadable.append(str(e))
                continue
            try:
                reference = self.staging.stage_marc_record(name, marc)
            except SQLAlchemyError as e:
                # The rest of this target's records would fail the same way.
                self.log.exception(f"Could not stage records from target {name}.")
                outcome.errors.append(
                    TargetError(
                        name,
                        SearchErrorType.OTHER,
                        f"Could not stage records: {e}",
                    )
                )
                break
            staged.append(
                SearchResult.from_record(
                    name,
                    record,
                    reference,
                    self.configuration.remote_id_tag,
                    self.configuration.remote_id_subfield,
                )
            )
        return staged

    def _error(
        self, name: str, error_type: SearchErrorType, error: Exception
    ) -> TargetError:
        self.log.warning(f"Searching target {name} failed ({error_type}): {error}")
        return TargetError(name, error_type, str(error))
