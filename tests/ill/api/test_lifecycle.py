from __future__ import annotations

from typing import Any
from unittest.mock import create_autospec

import pytest
import requests

from palace.ill.api.borrower import BorrowerMatch, BorrowerResolver
from palace.ill.api.lifecycle import (
    IllBackend,
    Next,
    Operation,
    RequestLifecycle,
    ResultEnvelope,
    ResultStatus,
    Stage,
)
from palace.ill.api.lifecycle.backend import Params
from palace.ill.sqlalchemy.model.illrequest import (
    IllRequest,
    IllRequestStatus,
    RemoteStatus,
)
from palace.ill.sqlalchemy.model.library import Library
from palace.ill.sqlalchemy.model.patron import Patron
from palace.ill.sqlalchemy.model.staging import Biblio
from tests.fixtures.database import DatabaseFixture
from tests.fixtures.files import ILSDIFilesFixture, SRUFilesFixture
from tests.fixtures.http import MockHttpClientFixture
from tests.fixtures.ill import KOHA_DEMO, KOHA_DEMO_HOLDS, IllFixture, marc_record


class LifecycleFixture:
    def __init__(
        self,
        db: DatabaseFixture,
        ill_fixture: IllFixture,
        http_client: MockHttpClientFixture,
        sru_files: SRUFilesFixture,
        ilsdi_files: ILSDIFilesFixture,
    ) -> None:
        self.db = db
        self.ill = ill_fixture
        self.http_client = http_client
        self.sru_files = sru_files
        self.ilsdi_files = ilsdi_files
        self.lifecycle = ill_fixture.lifecycle()

        self.library: Library = db.library("CPL", "Centerville")
        self.patron: Patron = db.patron(
            cardnumber="23529000035676",
            surname="Acosta",
            firstname="Henry",
            library=self.library,
        )

    def queue_search(self, filename: str = "search_koha.xml") -> None:
        self.http_client.queue_response(
            200, content=self.sru_files.sample_data(filename)
        )

    def queue_holds(self, *filenames: str) -> None:
        for filename in filenames:
            self.http_client.queue_response(
                200, content=self.ilsdi_files.sample_data(filename)
            )

    def search_form(self, **params: Any) -> ResultEnvelope:
        submitted = {
            "stage": "search_form",
            "cardnumber": self.patron.cardnumber,
            "branchcode": self.library.branchcode,
            "query": "koha",
        }
        submitted.update(params)
        return self.lifecycle.dispatch("create", None, submitted)

    def search_results_params(self, **params: Any) -> dict[str, Any]:
        reference = self.ill.stage(marc_record(title="Koha", remote_id="501"))
        submitted = {
            "stage": "search_results",
            "borrowernumber": str(self.patron.id),
            "branchcode": self.library.branchcode,
            "backend": "Koha",
            "target": KOHA_DEMO,
            "breedingid": reference,
            "title": "Koha",
            "author": "Koha Community",
        }
        submitted.update(params)
        return submitted

    def create_request(self, **params: Any) -> IllRequest:
        request = IllRequest()
        envelope = self.lifecycle.create(request, self.search_results_params(**params))
        assert envelope.error is False, envelope
        return request

    def confirmed_request(self) -> IllRequest:
        request = self.create_request()
        self.queue_holds("authenticate_patron.xml", "hold_title.xml")
        envelope = self.lifecycle.confirm(request, {})
        assert envelope.error is False, envelope
        return request

    def attributes(self, request: IllRequest) -> dict[str, str]:
        return self.lifecycle.attributes(request)


@pytest.fixture
def lifecycle_fixture(
    db: DatabaseFixture,
    ill_fixture: IllFixture,
    http_client: MockHttpClientFixture,
    sru_files_fixture: SRUFilesFixture,
    ilsdi_files_fixture: ILSDIFilesFixture,
) -> LifecycleFixture:
    return LifecycleFixture(
        db, ill_fixture, http_client, sru_files_fixture, ilsdi_files_fixture
    )


class TestResultEnvelope:
    def test_success(self) -> None:
        envelope = ResultEnvelope.success(
            Operation.CREATE, Stage.COMMIT, {"illrequest_id": 1}, next=Next.ILLVIEW
        )
        assert envelope.to_dict() == {
            "error": False,
            "status": "",
            "message": "",
            "operation": "create",
            "stage": "commit",
            "next": "illview",
            "value": {"illrequest_id": 1},
        }

    def test_failure(self) -> None:
        envelope = ResultEnvelope.failure(
            Operation.RENEW, Stage.RENEW, ResultStatus.NOT_RENEWED
        )
        data = envelope.to_dict()
        assert data["error"] is True
        assert data["status"] == "not_renewed"
        assert data["message"] == (
            "The request is still on order and cannot be renewed."
        )
        assert data["next"] is None
        assert data["value"] == {}

        envelope = ResultEnvelope.failure(
            "borrow", "", ResultStatus.UNKNOWN_OPERATION, "Unknown operation: borrow"
        )
        assert envelope.message == "Unknown operation: borrow"


class MinimalBackend(IllBackend):
    def name(self) -> str:
        return "Minimal"

    def create(self, request: IllRequest | None, params: Params) -> ResultEnvelope:
        return ResultEnvelope.success(Operation.CREATE, Stage.SEARCH_FORM)

    def confirm(self, request: IllRequest | None, params: Params) -> ResultEnvelope:
        return ResultEnvelope.success(Operation.CONFIRM, Stage.COMMIT)


class TestIllBackend:
    @pytest.mark.parametrize("operation", ["renew", "cancel", "status", "migrate"])
    def test_not_implemented(self, db: DatabaseFixture, operation: str) -> None:
        backend = MinimalBackend(db.store)
        envelope = backend.dispatch(operation, None, {})
        assert envelope.to_dict() == {
            "error": True,
            "status": "not_implemented",
            "message": "Not Implemented",
            "operation": operation,
            "stage": "fake",
            "next": None,
            "value": {},
        }

    def test_unknown_operation(self, db: DatabaseFixture) -> None:
        envelope = MinimalBackend(db.store).dispatch("borrow", None, {"stage": "init"})
        assert envelope.error is True
        assert envelope.status == ResultStatus.UNKNOWN_OPERATION
        assert envelope.stage == "init"

    def test_capabilities(self, db: DatabaseFixture) -> None:
        assert MinimalBackend(db.store).capabilities("unmediated_ill") is None

    def test_status_graph(self, db: DatabaseFixture) -> None:
        assert MinimalBackend(db.store).status_graph() == {
            "MIG": {
                "prev_actions": ["NEW", "REQREV", "QUEUED"],
                "id": "MIG",
                "name": "Backend Migration",
                "ui_method_name": "Switch provider",
                "method": "migrate",
                "next_actions": [],
                "ui_method_icon": "fa-search",
            }
        }

    def test_metadata(self, db: DatabaseFixture) -> None:
        request = db.ill_request(
            attributes={"bib_id": "501", "title": "Koha", "target": KOHA_DEMO}
        )
        assert MinimalBackend(db.store).metadata(request) == {
            "ID": "501",
            "Title": "Koha",
            "Author": None,
            "Target": KOHA_DEMO,
        }

    def test_attributes_of_unsaved_request(self, db: DatabaseFixture) -> None:
        backend = MinimalBackend(db.store)
        assert backend.attributes(None) == {}
        assert backend.attributes(IllRequest()) == {}


class TestCreate:
    @pytest.mark.parametrize("stage", [None, "init", "  "])
    def test_init(self, lifecycle_fixture: LifecycleFixture, stage: str | None) -> None:
        params = {"stage": stage, "cardnumber": "23529000035676"}
        envelope = lifecycle_fixture.lifecycle.create(None, params)
        assert envelope.error is False
        assert envelope.stage == Stage.SEARCH_FORM
        assert envelope.value == params

    def test_unknown_stage(self, lifecycle_fixture: LifecycleFixture) -> None:
        envelope = lifecycle_fixture.lifecycle.create(None, {"stage": "checkout"})
        assert envelope.error is True
        assert envelope.status == ResultStatus.UNKNOWN_STAGE
        assert envelope.stage == "checkout"

    def test_search_form(self, lifecycle_fixture: LifecycleFixture) -> None:
        lifecycle_fixture.queue_search()

        envelope = lifecycle_fixture.search_form()
        assert envelope.error is False
        assert envelope.stage == Stage.SEARCH_RESULTS
        assert envelope.operation == Operation.CREATE

        value = envelope.value
        assert [r["remote_id"] for r in value["results"]] == ["501", "502"]
        assert all(r["target"] == KOHA_DEMO for r in value["results"])
        assert all(r["breedingid"] for r in value["results"])
        assert value["errors"] == []
        assert value["query"] == {"srchany": "koha", "page": 1}
        assert value["borrowernumber"] == lifecycle_fixture.patron.id
        assert value["cardnumber"] == "23529000035676"
        assert value["branchcode"] == "CPL"
        assert value["backend"] == "Koha"

        [params] = lifecycle_fixture.http_client.params_for(
            "https://koha-demo.test/biblios"
        )
        assert params["query"] == 'cql.anywhere="koha"'

    @pytest.mark.parametrize(
        "params, status",
        [
            pytest.param({"branchcode": ""}, ResultStatus.MISSING_BRANCH, id="no-branch"),
            pytest.param({"branchcode": "MPL"}, ResultStatus.INVALID_BRANCH, id="unknown-branch"),
            pytest.param({"cardnumber": "0000"}, ResultStatus.INVALID_BORROWER, id="unknown-borrower"),
            pytest.param({"cardnumber": ""}, ResultStatus.INVALID_BORROWER, id="no-borrower"),
            pytest.param({"query": ""}, ResultStatus.MISSING_QUERY, id="no-query"),
        ],
    )
    def test_search_form_validation(
        self,
        lifecycle_fixture: LifecycleFixture,
        params: dict[str, str],
        status: ResultStatus,
    ) -> None:
        envelope = lifecycle_fixture.search_form(**params)
        assert envelope.error is True
        assert envelope.status == status
        assert envelope.stage == Stage.INIT
        # The submitted form is handed back.
        assert envelope.value["stage"] == "search_form"

        # Nothing is sent to a partner, and nothing is stored.
        assert lifecycle_fixture.http_client.requests == []
        assert lifecycle_fixture.db.session.query(IllRequest).count() == 0

    def test_search_form_several_borrowers(
        self, lifecycle_fixture: LifecycleFixture
    ) -> None:
        db = lifecycle_fixture.db
        first = db.patron(cardnumber="1001", surname="Smith", firstname="Ann")
        second = db.patron(cardnumber="1002", surname="Smith", firstname="Bob")

        envelope = lifecycle_fixture.search_form(cardnumber="Smith")
        assert envelope.error is False
        assert envelope.status == ResultStatus.OK
        assert envelope.stage == Stage.BORROWERS
        assert [b["borrowernumber"] for b in envelope.value["borrowers"]] == [
            first.id,
            second.id,
        ]
        assert envelope.value["borrowers"][1]["firstname"] == "Bob"
        assert lifecycle_fixture.http_client.requests == []

    def test_search_form_match_without_borrower(
        self, lifecycle_fixture: LifecycleFixture
    ) -> None:
        # A resolver that counts a match but hands back no patron.
        resolver = create_autospec(BorrowerResolver)
        resolver.resolve.return_value = BorrowerMatch(1, None)
        lifecycle_fixture.lifecycle.resolver = resolver

        envelope = lifecycle_fixture.search_form()
        assert envelope.error is True
        assert envelope.status == ResultStatus.INVALID_BORROWER
        assert envelope.stage == Stage.INIT
        assert lifecycle_fixture.http_client.requests == []

    def test_search_cont(self, lifecycle_fixture: LifecycleFixture) -> None:
        db = lifecycle_fixture.db
        db.patron(cardnumber="1001", surname="Smith", firstname="Ann")
        chosen = db.patron(cardnumber="1002", surname="Smith", firstname="Bob")
        lifecycle_fixture.queue_search("single_record.xml")

        envelope = lifecycle_fixture.lifecycle.create(
            None,
            {
                "stage": "search_cont",
                "borrowernumber": str(chosen.id),
                "branchcode": "CPL",
                "title": "Koha for librarians",
            },
        )
        assert envelope.error is False
        assert envelope.stage == Stage.SEARCH_RESULTS
        assert envelope.value["borrowernumber"] == chosen.id
        assert envelope.value["query"] == {"title": "Koha for librarians", "page": 1}

    def test_search_form_target_errors(self, lifecycle_fixture: LifecycleFixture) -> None:
        lifecycle_fixture.http_client.queue_exception(
            requests.exceptions.ReadTimeout("Read timed out.")
        )

        envelope = lifecycle_fixture.search_form()
        # A failed target doesn't fail the stage.
        assert envelope.error is False
        assert envelope.value["results"] == []
        [error] = envelope.value["errors"]
        assert error["target"] == KOHA_DEMO
        assert error["type"] == "timeout"

    def test_search_results(self, lifecycle_fixture: LifecycleFixture) -> None:
        request = IllRequest()
        envelope = lifecycle_fixture.lifecycle.create(
            request, lifecycle_fixture.search_results_params(isbn="9780596529321")
        )

        assert envelope.to_dict() == {
            "error": False,
            "status": "",
            "message": "",
            "operation": "create",
            "stage": "commit",
            "next": "illview",
            "value": {
                "target": KOHA_DEMO,
                "bib_id": "501",
                "title": "Koha",
                "author": "Koha Community",
                "isbn": "9780596529321",
                "illrequest_id": request.id,
            },
        }

        assert request.id is not None
        assert request.status == IllRequestStatus.NEW
        assert request.borrower_id == lifecycle_fixture.patron.id
        assert request.branchcode == "CPL"
        assert request.backend == "Koha"
        assert request.placed_at is not None
        assert request.order_id is None

        biblio = lifecycle_fixture.db.session.get(Biblio, request.biblio_id)
        assert biblio is not None
        assert biblio.framework == "ILL"

        assert lifecycle_fixture.attributes(request) == {
            "target": KOHA_DEMO,
            "bib_id": "501",
            "title": "Koha",
            "author": "Koha Community",
            "isbn": "9780596529321",
        }

    def test_search_results_without_request(
        self, lifecycle_fixture: LifecycleFixture
    ) -> None:
        envelope = lifecycle_fixture.lifecycle.create(
            None, lifecycle_fixture.search_results_params()
        )
        assert envelope.error is False
        request = lifecycle_fixture.db.store.find_request(envelope.value["illrequest_id"])
        assert request is not None
        assert request.status == IllRequestStatus.NEW

    @pytest.mark.parametrize(
        "params, status",
        [
            pytest.param({"borrowernumber": "999"}, ResultStatus.INVALID_BORROWER, id="unknown-borrower"),
            pytest.param({"borrowernumber": "abc"}, ResultStatus.INVALID_BORROWER, id="bad-borrower"),
            pytest.param({"borrowernumber": "\u00b2"}, ResultStatus.INVALID_BORROWER, id="superscript-borrower"),
            pytest.param({"branchcode": None}, ResultStatus.MISSING_BRANCH, id="no-branch"),
            pytest.param({"branchcode": "MPL"}, ResultStatus.INVALID_BRANCH, id="unknown-branch"),
            pytest.param({"target": "ELSEWHERE"}, ResultStatus.INVALID_TARGET, id="unknown-target"),
            pytest.param({"breedingid": None}, ResultStatus.IMPORT_FAILED, id="no-result"),
            pytest.param({"breedingid": "4242"}, ResultStatus.IMPORT_FAILED, id="missing-result"),
        ],
    )
    def test_search_results_failures(
        self,
        lifecycle_fixture: LifecycleFixture,
        params: dict[str, str | None],
        status: ResultStatus,
    ) -> None:
        envelope = lifecycle_fixture.lifecycle.create(
            None, lifecycle_fixture.search_results_params(**params)
        )
        assert envelope.error is True
        assert envelope.status == status
        assert envelope.stage == Stage.SEARCH_RESULTS

        # Nothing is persisted when the stage fails.
        db = lifecycle_fixture.db
        assert db.session.query(IllRequest).count() == 0
        assert db.session.query(Biblio).count() == 0

    def test_search_results_import_failure_message(
        self, lifecycle_fixture: LifecycleFixture
    ) -> None:
        envelope = lifecycle_fixture.lifecycle.create(
            None, lifecycle_fixture.search_results_params(breedingid="4242")
        )
        assert envelope.message == "No staged record with reference '4242'."


class TestConfirm:
    def test_confirm(self, lifecycle_fixture: LifecycleFixture) -> None:
        request = lifecycle_fixture.create_request()
        updated_before = request.updated_at
        lifecycle_fixture.queue_holds("authenticate_patron.xml", "hold_title.xml")

        envelope = lifecycle_fixture.lifecycle.dispatch("confirm", request, {})
        assert envelope.error is False
        assert envelope.stage == Stage.COMMIT
        assert envelope.next == Next.ILLVIEW
        assert envelope.value["status"] == RemoteStatus.ON_ORDER

        assert request.status == IllRequestStatus.REQ
        assert request.order_id == "501"
        assert request.cost == "0 GBP"
        assert request.updated_at >= updated_before

        hold = lifecycle_fixture.http_client.params_for(KOHA_DEMO_HOLDS)[1]
        assert hold["bib_id"] == "501"
        assert hold["patron_id"] == "419"

    def test_authentication_error(self, lifecycle_fixture: LifecycleFixture) -> None:
        request = lifecycle_fixture.create_request()
        lifecycle_fixture.queue_holds("authenticate_patron_not_found.xml")

        envelope = lifecycle_fixture.lifecycle.confirm(request, {})
        assert envelope.error is True
        assert envelope.stage == Stage.CONFIRM
        assert envelope.status == ResultStatus.REMOTE_AUTHENTICATION_ERROR
        assert "PatronNotFound" in envelope.message
        assert envelope.value["bib_id"] == "501"

        assert request.status == IllRequestStatus.NEW
        assert request.order_id is None
        assert request.cost is None
        assert "status" not in lifecycle_fixture.attributes(request)

    def test_hold_refused(self, lifecycle_fixture: LifecycleFixture) -> None:
        request = lifecycle_fixture.create_request()
        lifecycle_fixture.queue_holds(
            "authenticate_patron.xml", "hold_title_not_holdable.xml"
        )

        envelope = lifecycle_fixture.lifecycle.confirm(request, {})
        assert envelope.status == ResultStatus.REMOTE_REQUEST_ERROR
        assert envelope.message == "Service Request Error: NotHoldable"
        assert request.status == IllRequestStatus.NEW

    def test_transport_error(self, lifecycle_fixture: LifecycleFixture) -> None:
        request = lifecycle_fixture.create_request()
        lifecycle_fixture.http_client.queue_response(
            502, content="Bad gateway", reason="Bad Gateway"
        )

        envelope = lifecycle_fixture.lifecycle.confirm(request, {})
        assert envelope.status == ResultStatus.REMOTE_TRANSPORT_ERROR
        assert "Status - 502 Bad Gateway" in envelope.message
        assert "Content - Bad gateway" in envelope.message
        assert "secret" not in envelope.message
        assert request.status == IllRequestStatus.NEW

    def test_unknown_request(self, lifecycle_fixture: LifecycleFixture) -> None:
        lifecycle = lifecycle_fixture.lifecycle
        assert lifecycle.confirm(None, {}).status == ResultStatus.UNKNOWN_REQUEST

        # A request with no attributes wasn't created by this backend.
        request = lifecycle_fixture.db.ill_request()
        assert lifecycle.confirm(request, {}).status == ResultStatus.UNKNOWN_REQUEST

    def test_target_cannot_place_holds(self, lifecycle_fixture: LifecycleFixture) -> None:
        request = lifecycle_fixture.db.ill_request(
            attributes={"target": "RETIRED", "bib_id": "501"}
        )
        envelope = lifecycle_fixture.lifecycle.confirm(request, {})
        assert envelope.status == ResultStatus.INVALID_TARGET
        assert envelope.message == "Target 'RETIRED' cannot accept holds."
        assert lifecycle_fixture.http_client.requests == []

    def test_no_remote_id(self, lifecycle_fixture: LifecycleFixture) -> None:
        request = lifecycle_fixture.db.ill_request(attributes={"target": KOHA_DEMO})
        envelope = lifecycle_fixture.lifecycle.confirm(request, {})
        assert envelope.status == ResultStatus.UNKNOWN_REQUEST
        assert lifecycle_fixture.http_client.requests == []


class TestRenewCancelStatus:
    def test_renew_while_on_order(self, lifecycle_fixture: LifecycleFixture) -> None:
        request = lifecycle_fixture.confirmed_request()

        envelope = lifecycle_fixture.lifecycle.dispatch("renew", request, {})
        assert envelope.error is True
        assert envelope.status == ResultStatus.NOT_RENEWED
        assert envelope.stage == Stage.RENEW
        assert lifecycle_fixture.attributes(request)["status"] == "On order"

    def test_renew(self, lifecycle_fixture: LifecycleFixture) -> None:
        request = lifecycle_fixture.create_request()
        lifecycle_fixture.db.store.store_attribute(
            request.id, "status", RemoteStatus.RECEIVED.value
        )

        envelope = lifecycle_fixture.lifecycle.renew(request, {})
        assert envelope.error is False
        assert envelope.stage == Stage.COMMIT
        assert envelope.value["status"] == "Renewed"
        assert lifecycle_fixture.attributes(request)["status"] == "Renewed"

    def test_renew_unknown_request(self, lifecycle_fixture: LifecycleFixture) -> None:
        request = lifecycle_fixture.create_request()
        envelope = lifecycle_fixture.lifecycle.renew(request, {})
        assert envelope.status == ResultStatus.UNKNOWN_REQUEST

    def test_confirm_then_cancel(self, lifecycle_fixture: LifecycleFixture) -> None:
        request = lifecycle_fixture.confirmed_request()
        assert request.status == IllRequestStatus.REQ
        assert request.order_id is not None
        assert request.cost is not None

        envelope = lifecycle_fixture.lifecycle.dispatch("cancel", request, {})
        assert envelope.error is False
        assert envelope.stage == Stage.COMMIT
        assert envelope.next == Next.ILLVIEW

        assert request.status == IllRequestStatus.REQREV
        assert request.order_id is None
        assert request.cost is None
        assert lifecycle_fixture.attributes(request)["status"] == "Reverted"

    def test_cancel_unconfirmed(self, lifecycle_fixture: LifecycleFixture) -> None:
        request = lifecycle_fixture.create_request()
        envelope = lifecycle_fixture.lifecycle.cancel(request, {})
        assert envelope.error is True
        assert envelope.status == ResultStatus.UNKNOWN_REQUEST
        assert request.status == IllRequestStatus.NEW

    def test_status(self, lifecycle_fixture: LifecycleFixture) -> None:
        request = lifecycle_fixture.confirmed_request()
        lifecycle = lifecycle_fixture.lifecycle

        first = lifecycle.status(request, {})
        second = lifecycle.status(request, {"stage": "init"})
        assert first == second
        assert first.error is False
        assert first.stage == Stage.STATUS
        assert first.value == lifecycle_fixture.attributes(request)
        assert first.value["status"] == "On order"

        envelope = lifecycle.status(request, {"stage": "status"})
        assert envelope.error is False
        assert envelope.stage == Stage.COMMIT
        assert envelope.next == Next.ILLLIST

    def test_status_unknown(self, lifecycle_fixture: LifecycleFixture) -> None:
        request = lifecycle_fixture.create_request()
        lifecycle = lifecycle_fixture.lifecycle
        assert lifecycle.status(request, {}).status == ResultStatus.UNKNOWN_REQUEST
        assert (
            lifecycle.status(request, {"stage": "review"}).status
            == ResultStatus.UNKNOWN_STAGE
        )


class TestMigrate:
    def test_immigrate_search(self, lifecycle_fixture: LifecycleFixture) -> None:
        original = lifecycle_fixture.create_request(isbn="9780596529321")
        lifecycle_fixture.queue_search()

        envelope = lifecycle_fixture.lifecycle.dispatch(
            "migrate", None, {"stage": "immigrate", "illrequest_id": str(original.id)}
        )
        assert envelope.error is False
        assert envelope.stage == Stage.IMMIGRATE
        value = envelope.value
        assert value["step"] == "search_results"
        assert value["illrequest_id"] == original.id
        assert value["borrowernumber"] == lifecycle_fixture.patron.id
        assert value["branchcode"] == "CPL"
        assert len(value["results"]) == 2
        # The original's search fields seed the new search. The target
        # and remote id are not search fields.
        assert value["query"] == {
            "isbn": "9780596529321",
            "title": "Koha",
            "author": "Koha Community",
            "page": 1,
        }

        [params] = lifecycle_fixture.http_client.params_for(
            "https://koha-demo.test/biblios"
        )
        assert params["query"] == (
            'bath.isbn="9780596529321" and dc.title="Koha" '
            'and dc.creator="Koha Community"'
        )

    def test_immigrate_import(self, lifecycle_fixture: LifecycleFixture) -> None:
        original = lifecycle_fixture.create_request()
        reference = lifecycle_fixture.ill.stage(
            marc_record(title="Koha, second edition", remote_id="777")
        )

        new_request = IllRequest()
        envelope = lifecycle_fixture.lifecycle.migrate(
            new_request,
            {
                "stage": "immigrate",
                "step": "search_results",
                "illrequest_id": str(original.id),
                "target": KOHA_DEMO,
                "breedingid": reference,
                "title": "Koha, second edition",
            },
        )
        assert envelope.error is False
        assert envelope.stage == Stage.COMMIT
        assert envelope.next == Next.EMIGRATE
        assert envelope.value["illrequest_id"] == new_request.id

        assert new_request.id != original.id
        assert new_request.status == IllRequestStatus.NEW
        assert new_request.borrower_id == original.borrower_id
        assert new_request.branchcode == original.branchcode
        assert lifecycle_fixture.attributes(new_request) == {
            "target": KOHA_DEMO,
            "bib_id": "777",
            "title": "Koha, second edition",
            "migrated_from": str(original.id),
        }

    def test_emigrate(self, lifecycle_fixture: LifecycleFixture) -> None:
        original = lifecycle_fixture.confirmed_request()

        envelope = lifecycle_fixture.lifecycle.migrate(original, {"stage": "emigrate"})
        assert envelope.error is False
        assert envelope.stage == Stage.COMMIT
        assert original.status == IllRequestStatus.REQREV
        assert original.order_id is None

    @pytest.mark.parametrize(
        "params, status",
        [
            pytest.param({"stage": "immigrate"}, ResultStatus.UNKNOWN_REQUEST, id="no-original"),
            pytest.param(
                {"stage": "immigrate", "illrequest_id": "9999"},
                ResultStatus.UNKNOWN_REQUEST,
                id="missing-original",
            ),
            pytest.param(
                {"stage": "immigrate", "illrequest_id": "\u00b2"},
                ResultStatus.UNKNOWN_REQUEST,
                id="superscript-original",
            ),
            pytest.param({"stage": "elsewhere"}, ResultStatus.UNKNOWN_STAGE, id="unknown-stage"),
        ],
    )
    def test_migrate_failures(
        self,
        lifecycle_fixture: LifecycleFixture,
        params: dict[str, str],
        status: ResultStatus,
    ) -> None:
        envelope = lifecycle_fixture.lifecycle.migrate(None, params)
        assert envelope.error is True
        assert envelope.status == status

    def test_immigrate_without_search_fields(
        self, lifecycle_fixture: LifecycleFixture
    ) -> None:
        original = lifecycle_fixture.db.ill_request(attributes={"target": KOHA_DEMO})
        envelope = lifecycle_fixture.lifecycle.migrate(
            None, {"illrequest_id": str(original.id)}
        )
        assert envelope.status == ResultStatus.MISSING_QUERY
        assert lifecycle_fixture.http_client.requests == []

    def test_emigrate_unsaved_request(self, lifecycle_fixture: LifecycleFixture) -> None:
        envelope = lifecycle_fixture.lifecycle.migrate(
            IllRequest(), {"stage": "emigrate"}
        )
        assert envelope.status == ResultStatus.UNKNOWN_REQUEST


class TestEndToEnd:
    def test_create_confirm_cancel(self, lifecycle_fixture: LifecycleFixture) -> None:
        lifecycle: RequestLifecycle = lifecycle_fixture.lifecycle

        envelope = lifecycle.dispatch("create", None, {"stage": "init"})
        assert envelope.stage == Stage.SEARCH_FORM

        lifecycle_fixture.queue_search()
        envelope = lifecycle_fixture.search_form()
        assert envelope.stage == Stage.SEARCH_RESULTS
        chosen = envelope.value["results"][0]

        # The host sends back the borrower, branch and chosen result.
        request = IllRequest()
        envelope = lifecycle.dispatch(
            "create",
            request,
            {
                "stage": "search_results",
                "borrowernumber": envelope.value["borrowernumber"],
                "branchcode": envelope.value["branchcode"],
                "backend": envelope.value["backend"],
                "target": chosen["target"],
                "breedingid": chosen["breedingid"],
                "title": chosen["title"],
                "author": chosen["author"],
            },
        )
        assert (envelope.error, envelope.stage, envelope.next) == (
            False,
            Stage.COMMIT,
            Next.ILLVIEW,
        )
        assert request.status == IllRequestStatus.NEW
        assert lifecycle.metadata(request) == {
            "ID": "501",
            "Title": "Koha : the open source library system",
            "Author": "Koha Community",
            "Target": KOHA_DEMO,
        }

        lifecycle_fixture.queue_holds("authenticate_patron.xml", "hold_title.xml")
        envelope = lifecycle.dispatch("confirm", request, {})
        assert envelope.error is False
        assert request.status == IllRequestStatus.REQ

        envelope = lifecycle.dispatch("cancel", request, {})
        assert envelope.error is False
        assert request.status == IllRequestStatus.REQREV
