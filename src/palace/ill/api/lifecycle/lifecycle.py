from __future__ import annotations

from collections.abc import Callable, Mapping
from typing import Any

from palace.ill.api.borrower import BorrowerResolver, ResolutionMode
from palace.ill.api.ilsdi.client import RemoteHoldsClient
from palace.ill.api.ilsdi.exception import (
    AuthenticationFailed,
    HoldPlacementFailed,
    HoldsTransportError,
)
from palace.ill.api.importer import ImportedRecord, RecordImporter, RecordImportError
from palace.ill.api.interfaces import Catalog, Directory, RequestStore, StagingArea
from palace.ill.api.lifecycle.backend import IllBackend, Params
from palace.ill.api.lifecycle.envelope import (
    Next,
    Operation,
    ResultEnvelope,
    ResultStatus,
    Stage,
)
from palace.ill.api.search import RemoteCatalogSearch, SearchResults
from palace.ill.api.settings import IllBrokerConfiguration
from palace.ill.api.sru.query import SearchQuery
from palace.ill.core.exceptions import PalaceValueError
from palace.ill.sqlalchemy.model.illrequest import (
    AttributeType,
    IllRequest,
    IllRequestStatus,
    RemoteStatus,
)
from palace.ill.sqlalchemy.model.patron import Patron
from palace.ill.util.datetime_helpers import utc_now

StageHandler = Callable[[IllRequest | None, Params], ResultEnvelope]


def _param(params: Params, key: str) -> str | None:
    value = params.get(key)
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def _id_param(params: Params, key: str) -> int | None:
    value = _param(params, key)
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        return None


def _patron_summary(patron: Patron) -> dict[str, Any]:
    return {
        "borrowernumber": patron.id,
        "cardnumber": patron.cardnumber,
        "surname": patron.surname,
        "firstname": patron.firstname,
        "branchcode": patron.branchcode,
    }


class RequestLifecycle(IllBackend):
    """Places ILL requests with partner catalogs.

    Records are found by searching every configured target over SRU, copied
    into the local catalog as suppressed records, and requested from the
    partner by placing a hold over ILS-DI.

    Each operation is a small stage machine. Nothing is kept between
    calls: the host sends back the stage it was told to render, along with
    whatever it was handed in the previous envelope's value.
    """

    NAME = "Koha"

    def __init__(
        self,
        configuration: IllBrokerConfiguration,
        store: RequestStore,
        directory: Directory,
        staging: StagingArea,
        catalog: Catalog,
        search: RemoteCatalogSearch | None = None,
        holds: RemoteHoldsClient | None = None,
        resolver: BorrowerResolver | None = None,
        importer: RecordImporter | None = None,
    ) -> None:
        super().__init__(store)
        self.configuration = configuration
        self.directory = directory
        self.search = search or RemoteCatalogSearch(configuration, staging)
        self.holds = holds or RemoteHoldsClient(
            timeout=configuration.holds_timeout,
            max_retry_count=configuration.max_retry_count,
            request_location=configuration.request_location,
        )
        self.resolver = resolver or BorrowerResolver(directory)
        self.importer = importer or RecordImporter(
            staging,
            catalog,
            remote_id_tag=configuration.remote_id_tag,
            remote_id_subfield=configuration.remote_id_subfield,
            suppression_tag=configuration.suppression_tag,
            suppression_subfield=configuration.suppression_subfield,
        )

    def name(self) -> str:
        return self.NAME

    # create

    def create(self, request: IllRequest | None, params: Params) -> ResultEnvelope:
        stages: dict[str | None, StageHandler] = {
            None: self._create_init,
            Stage.INIT: self._create_init,
            Stage.SEARCH_FORM: self._create_search_form,
            Stage.SEARCH_CONT: self._create_search_cont,
            Stage.SEARCH_RESULTS: self._create_search_results,
        }
        return self._run_stage(Operation.CREATE, stages, request, params)

    def _create_init(self, request: IllRequest | None, params: Params) -> ResultEnvelope:
        return ResultEnvelope.success(Operation.CREATE, Stage.SEARCH_FORM, dict(params))

    def _create_search_form(
        self, request: IllRequest | None, params: Params
    ) -> ResultEnvelope:
        return self._search_for_borrower(
            params, _param(params, "cardnumber"), ResolutionMode.DEFAULT
        )

    def _create_search_cont(
        self, request: IllRequest | None, params: Params
    ) -> ResultEnvelope:
        identifier = _param(params, "borrowernumber") or _param(params, "cardnumber")
        return self._search_for_borrower(
            params, identifier, ResolutionMode.CONTINUATION
        )

    def _search_for_borrower(
        self, params: Params, identifier: str | None, mode: ResolutionMode
    ) -> ResultEnvelope:
        # The borrower and branch are checked before anything is sent to
        # a partner. Failures send the operator back to the search form.
        match = self.resolver.resolve(identifier, mode)

        branchcode = _param(params, "branchcode")
        if branchcode is None:
            return self._fail(Operation.CREATE, Stage.INIT, ResultStatus.MISSING_BRANCH, params)
        if self.directory.find_library(branchcode) is None:
            return self._fail(Operation.CREATE, Stage.INIT, ResultStatus.INVALID_BRANCH, params)
        if match.count == 0:
            return self._fail(
                Operation.CREATE, Stage.INIT, ResultStatus.INVALID_BORROWER, params
            )
        if match.count > 1:
            value = dict(params)
            value["borrowers"] = [_patron_summary(p) for p in match.candidates]
            return ResultEnvelope.success(Operation.CREATE, Stage.BORROWERS, value)

        patron = match.patron
        if patron is None:
            return self._fail(
                Operation.CREATE, Stage.INIT, ResultStatus.INVALID_BORROWER, params
            )
        query = SearchQuery.from_params(params)
        if query.is_empty:
            return self._fail(Operation.CREATE, Stage.INIT, ResultStatus.MISSING_QUERY, params)

        results = self.search.search(query)
        value = self._search_value(results, query)
        value.update(
            {
                "borrowernumber": patron.id,
                "cardnumber": patron.cardnumber,
                "branchcode": branchcode,
                "backend": _param(params, "backend") or self.name(),
            }
        )
        return ResultEnvelope.success(Operation.CREATE, Stage.SEARCH_RESULTS, value)

    def _create_search_results(
        self, request: IllRequest | None, params: Params
    ) -> ResultEnvelope:
        stage = Stage.SEARCH_RESULTS

        borrower_id = _id_param(params, "borrowernumber")
        patron = (
            self.directory.find_patron_by_id(borrower_id)
            if borrower_id is not None
            else None
        )
        if patron is None:
            return self._fail(Operation.CREATE, stage, ResultStatus.INVALID_BORROWER, params)

        branchcode = _param(params, "branchcode")
        if branchcode is None:
            return self._fail(Operation.CREATE, stage, ResultStatus.MISSING_BRANCH, params)
        if self.directory.find_library(branchcode) is None:
            return self._fail(Operation.CREATE, stage, ResultStatus.INVALID_BRANCH, params)

        target = _param(params, "target")
        if target is None or target not in self.configuration.targets:
            return self._fail(Operation.CREATE, stage, ResultStatus.INVALID_TARGET, params)

        imported = self._import(params)
        if isinstance(imported, ResultEnvelope):
            return imported

        request = request if request is not None else IllRequest()
        request.borrower_id = patron.id
        request.branchcode = branchcode
        request.status = IllRequestStatus.NEW
        request.backend = _param(params, "backend") or self.name()
        request.biblio_id = imported.biblio_id
        request.place(utc_now())
        self.store.store(request)

        details = self._details(params, target, imported)
        self._store_attributes(request, details)
        self.log.info(
            f"Created ILL request {request.id} for patron {patron.id} from {target}."
        )

        value: dict[str, Any] = dict(details)
        value["illrequest_id"] = request.id
        return ResultEnvelope.success(
            Operation.CREATE, Stage.COMMIT, value, next=Next.ILLVIEW
        )

    # confirm

    def confirm(self, request: IllRequest | None, params: Params) -> ResultEnvelope:
        attributes = self.attributes(request)
        if request is None or not attributes:
            return self._fail(Operation.CONFIRM, Stage.CONFIRM, ResultStatus.UNKNOWN_REQUEST)

        name = attributes.get(AttributeType.TARGET)
        target = self.configuration.targets.get(name) if name is not None else None
        if target is None or not target.can_place_holds:
            return ResultEnvelope.failure(
                Operation.CONFIRM,
                Stage.CONFIRM,
                ResultStatus.INVALID_TARGET,
                f"Target '{name}' cannot accept holds.",
                attributes,
            )

        bib_id = attributes.get(AttributeType.BIB_ID)
        if bib_id is None:
            return ResultEnvelope.failure(
                Operation.CONFIRM,
                Stage.CONFIRM,
                ResultStatus.UNKNOWN_REQUEST,
                "The request has no remote record id.",
                attributes,
            )

        try:
            self.holds.place_hold(name, target, bib_id)
        except HoldsTransportError as e:
            return self._remote_failure(ResultStatus.REMOTE_TRANSPORT_ERROR, e, attributes)
        except AuthenticationFailed as e:
            return self._remote_failure(
                ResultStatus.REMOTE_AUTHENTICATION_ERROR, e, attributes
            )
        except HoldPlacementFailed as e:
            return self._remote_failure(ResultStatus.REMOTE_REQUEST_ERROR, e, attributes)

        # ILS-DI does not tell us what the loan costs or give us an order
        # number of its own.
        request.cost = self.configuration.placeholder_cost
        request.order_id = bib_id
        request.status = IllRequestStatus.REQ
        request.touch(utc_now())
        self.store.store(request)
        self._set_remote_status(request, RemoteStatus.ON_ORDER)

        return ResultEnvelope.success(
            Operation.CONFIRM, Stage.COMMIT, self.attributes(request), next=Next.ILLVIEW
        )

    def _remote_failure(
        self, status: ResultStatus, error: Exception, attributes: dict[str, str]
    ) -> ResultEnvelope:
        self.log.warning(f"Confirming request failed: {error}")
        return ResultEnvelope.failure(
            Operation.CONFIRM, Stage.CONFIRM, status, str(error), attributes
        )

    # renew, cancel and status

    def renew(self, request: IllRequest | None, params: Params) -> ResultEnvelope:
        attributes = self.attributes(request)
        remote_status = attributes.get(AttributeType.STATUS)
        if request is None or remote_status is None:
            return self._fail(Operation.RENEW, Stage.RENEW, ResultStatus.UNKNOWN_REQUEST)
        if remote_status == RemoteStatus.ON_ORDER:
            return ResultEnvelope.failure(
                Operation.RENEW,
                Stage.RENEW,
                ResultStatus.NOT_RENEWED,
                value=attributes,
            )

        self._set_remote_status(request, RemoteStatus.RENEWED)
        request.touch(utc_now())
        self.store.store(request)
        return ResultEnvelope.success(
            Operation.RENEW, Stage.COMMIT, self.attributes(request), next=Next.ILLVIEW
        )

    def cancel(self, request: IllRequest | None, params: Params) -> ResultEnvelope:
        attributes = self.attributes(request)
        if request is None or AttributeType.STATUS not in attributes:
            return self._fail(Operation.CANCEL, Stage.CANCEL, ResultStatus.UNKNOWN_REQUEST)

        self._set_remote_status(request, RemoteStatus.REVERTED)
        request.status = IllRequestStatus.REQREV
        request.cost = None
        request.order_id = None
        request.touch(utc_now())
        self.store.store(request)
        return ResultEnvelope.success(
            Operation.CANCEL, Stage.COMMIT, self.attributes(request), next=Next.ILLVIEW
        )

    def status(self, request: IllRequest | None, params: Params) -> ResultEnvelope:
        stage = _param(params, "stage")
        if stage is None or stage == Stage.INIT:
            attributes = self.attributes(request)
            if AttributeType.STATUS not in attributes:
                return self._fail(
                    Operation.STATUS, Stage.INIT, ResultStatus.UNKNOWN_REQUEST
                )
            return ResultEnvelope.success(Operation.STATUS, Stage.STATUS, attributes)
        if stage == Stage.STATUS:
            return ResultEnvelope.success(
                Operation.STATUS, Stage.COMMIT, {}, next=Next.ILLLIST
            )
        return self._fail(Operation.STATUS, stage, ResultStatus.UNKNOWN_STAGE)

    # migrate

    def migrate(self, request: IllRequest | None, params: Params) -> ResultEnvelope:
        stage = _param(params, "stage")
        if stage is None or stage == Stage.IMMIGRATE:
            return self._immigrate(request, params)
        if stage == Stage.EMIGRATE:
            return self._emigrate(request, params)
        return self._fail(Operation.MIGRATE, stage, ResultStatus.UNKNOWN_STAGE, params)

    def _immigrate(self, request: IllRequest | None, params: Params) -> ResultEnvelope:
        original_id = _id_param(params, "illrequest_id")
        original = None
        if original_id is not None:
            original = self.store.find_request(original_id)
        if original is None:
            return self._fail(
                Operation.MIGRATE, Stage.IMMIGRATE, ResultStatus.UNKNOWN_REQUEST, params
            )

        step = _param(params, "step")
        if step is None or step == Stage.INIT:
            return self._immigrate_search(original, params)
        if step == Stage.SEARCH_RESULTS:
            return self._immigrate_import(original, request, params)
        return self._fail(Operation.MIGRATE, Stage.IMMIGRATE, ResultStatus.UNKNOWN_STAGE, params)

    def _immigrate_search(self, original: IllRequest, params: Params) -> ResultEnvelope:
        # Search again with whatever the original request was searched by.
        attributes = self.attributes(original)
        seed: dict[str, Any] = {
            key.value: attributes[key]
            for key in AttributeType.search_fields()
            if key in attributes
        }
        seed["page"] = params.get("page")
        query = SearchQuery.from_params(seed)
        if query.is_empty:
            return self._fail(
                Operation.MIGRATE, Stage.IMMIGRATE, ResultStatus.MISSING_QUERY, params
            )

        results = self.search.search(query)
        value = self._search_value(results, query)
        value.update(
            {
                "step": Stage.SEARCH_RESULTS.value,
                "illrequest_id": original.id,
                "borrowernumber": original.borrower_id,
                "branchcode": original.branchcode,
                "backend": self.name(),
            }
        )
        return ResultEnvelope.success(Operation.MIGRATE, Stage.IMMIGRATE, value)

    def _immigrate_import(
        self, original: IllRequest, request: IllRequest | None, params: Params
    ) -> ResultEnvelope:
        target = _param(params, "target")
        if target is None or target not in self.configuration.targets:
            return self._fail(
                Operation.MIGRATE, Stage.IMMIGRATE, ResultStatus.INVALID_TARGET, params
            )

        imported = self._import(params, Operation.MIGRATE, Stage.IMMIGRATE)
        if isinstance(imported, ResultEnvelope):
            return imported

        request = request if request is not None else IllRequest()
        request.borrower_id = original.borrower_id
        request.branchcode = original.branchcode
        request.status = IllRequestStatus.NEW
        request.backend = self.name()
        request.biblio_id = imported.biblio_id
        request.place(utc_now())
        self.store.store(request)

        details = self._details(params, target, imported)
        details[AttributeType.MIGRATED_FROM] = str(original.id)
        self._store_attributes(request, details)
        self.log.info(f"Migrated ILL request {original.id} to request {request.id}.")

        value: dict[str, Any] = dict(details)
        value["illrequest_id"] = request.id
        return ResultEnvelope.success(
            Operation.MIGRATE, Stage.COMMIT, value, next=Next.EMIGRATE
        )

    def _emigrate(self, request: IllRequest | None, params: Params) -> ResultEnvelope:
        if request is None or request.id is None:
            return self._fail(
                Operation.MIGRATE, Stage.EMIGRATE, ResultStatus.UNKNOWN_REQUEST, params
            )

        # The request has moved to another backend, so it is closed here.
        request.status = IllRequestStatus.REQREV
        request.order_id = None
        request.touch(utc_now())
        self.store.store(request)
        return ResultEnvelope.success(
            Operation.MIGRATE, Stage.COMMIT, {"illrequest_id": request.id}
        )

    # helpers

    def _run_stage(
        self,
        operation: Operation,
        stages: Mapping[str | None, StageHandler],
        request: IllRequest | None,
        params: Params,
    ) -> ResultEnvelope:
        stage = _param(params, "stage")
        handler = stages.get(stage)
        if handler is None:
            return self._fail(operation, stage or "", ResultStatus.UNKNOWN_STAGE, params)
        return handler(request, params)

    def _fail(
        self,
        operation: Operation,
        stage: Stage | str,
        status: ResultStatus,
        params: Params | None = None,
    ) -> ResultEnvelope:
        self.log.info(f"{operation} ({stage}) failed: {status}")
        return ResultEnvelope.failure(
            operation, stage, status, value=dict(params) if params is not None else {}
        )

    def _import(
        self,
        params: Params,
        operation: Operation = Operation.CREATE,
        stage: Stage = Stage.SEARCH_RESULTS,
    ) -> ImportedRecord | ResultEnvelope:
        reference = _param(params, "breedingid")
        if reference is None:
            return ResultEnvelope.failure(
                operation,
                stage,
                ResultStatus.IMPORT_FAILED,
                "No search result was selected.",
                dict(params),
            )
        try:
            return self.importer.import_record(reference, self.configuration.framework)
        except RecordImportError as e:
            self.log.warning(f"Import of staged record {reference} failed: {e}")
            return ResultEnvelope.failure(
                operation, stage, ResultStatus.IMPORT_FAILED, str(e), dict(params)
            )

    @staticmethod
    def _details(
        params: Params, target: str, imported: ImportedRecord
    ) -> dict[str, str | None]:
        return {
            AttributeType.TARGET: target,
            AttributeType.BIB_ID: imported.remote_id,
            AttributeType.TITLE: _param(params, "title"),
            AttributeType.AUTHOR: _param(params, "author"),
            AttributeType.ISBN: _param(params, "isbn"),
        }

    @staticmethod
    def _search_value(results: SearchResults, query: SearchQuery) -> dict[str, Any]:
        value = results.as_dict()
        value["query"] = query.as_dict()
        return value

    def _store_attributes(
        self, request: IllRequest, details: Mapping[str, str | None]
    ) -> None:
        for key, value in details.items():
            if value is None:
                continue
            if not key:
                raise PalaceValueError("Attribute keys must not be empty.")
            if not AttributeType.is_known(key):
                self.log.debug(f"Storing extension attribute '{key}' on request {request.id}.")
            self.store.store_attribute(request.id, str(key), str(value))

    def _set_remote_status(self, request: IllRequest, status: RemoteStatus) -> None:
        """Record the partner's view of the request, replacing any earlier one."""
        if (
            self.store.update_attribute_value(
                request.id, AttributeType.STATUS.value, status.value
            )
            is None
        ):
            self.store.store_attribute(
                request.id, AttributeType.STATUS.value, status.value
            )
