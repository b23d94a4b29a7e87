from __future__ import annotations

from typing import NamedTuple

from pymarc import Field, Indicators, Record, Subfield
from pymarc.exceptions import PymarcException
from sqlalchemy.exc import SQLAlchemyError

from palace.ill.api.interfaces import Catalog, StagingArea
from palace.ill.core.exceptions import BasePalaceException
from palace.ill.util.log import LoggerMixin


class RecordImportError(BasePalaceException):
    """A staged record could not be added to the local catalog."""


class StagedRecordNotFound(RecordImportError):
    def __init__(self, reference: str) -> None:
        super().__init__(f"No staged record with reference '{reference}'.")
        self.reference = reference


class ImportedRecord(NamedTuple):
    biblio_id: int
    remote_id: str


class RecordImporter(LoggerMixin):
    """Copy a staged search result into the local catalog.

    The copy is suppressed from the public catalog, and the partner's own
    record number is taken out of it and handed back to the caller.
    """

    def __init__(
        self,
        staging: StagingArea,
        catalog: Catalog,
        remote_id_tag: str = "999",
        remote_id_subfield: str = "c",
        suppression_tag: str = "942",
        suppression_subfield: str = "n",
    ) -> None:
        self.staging = staging
        self.catalog = catalog
        self.remote_id_tag = remote_id_tag
        self.remote_id_subfield = remote_id_subfield
        self.suppression_tag = suppression_tag
        self.suppression_subfield = suppression_subfield

    def import_record(self, reference: str, framework: str) -> ImportedRecord:
        """
        :raise StagedRecordNotFound: If nothing is staged under `reference`.
        :raise RecordImportError: If the record is unreadable, has no
            remote id, or could not be committed.
        """
        marc = self.staging.fetch_staged_marc_record(reference)
        if marc is None:
            raise StagedRecordNotFound(reference)

        try:
            record = Record(data=marc, force_utf8=True)
        except (PymarcException, UnicodeError, ValueError) as e:
            raise RecordImportError(
                f"Staged record '{reference}' could not be read: {e}"
            ) from e

        remote_id = self.extract_remote_id(record)
        if remote_id is None:
            raise RecordImportError(
                f"Staged record '{reference}' has no "
                f"{self.remote_id_tag}${self.remote_id_subfield}."
            )
        self.suppress(record)

        try:
            biblio_id = self.catalog.commit_record(record, framework)
        except SQLAlchemyError as e:
            raise RecordImportError(
                f"Could not commit staged record '{reference}': {e}"
            ) from e

        self.log.info(
            f"Imported staged record {reference} as biblio {biblio_id} "
            f"(remote id {remote_id})."
        )
        return ImportedRecord(biblio_id, remote_id)

    def extract_remote_id(self, record: Record) -> str | None:
        """Return the remote id and remove every field that carries one."""
        fields = record.get_fields(self.remote_id_tag)
        remote_id = None
        for marc_field in fields:
            for value in marc_field.get_subfields(self.remote_id_subfield):
                if remote_id is None and value and value.strip():
                    remote_id = value.strip()
        if fields:
            record.remove_fields(self.remote_id_tag)
        return remote_id

    def suppress(self, record: Record) -> None:
        """Hide the record from the public catalog. Safe to call twice."""
        fields = record.get_fields(self.suppression_tag)
        if fields:
            marc_field = fields[0]
            if self.suppression_subfield in marc_field:
                marc_field.subfields = [
                    (
                        Subfield(code=subfield.code, value="1")
                        if subfield.code == self.suppression_subfield
                        else subfield
                    )
                    for subfield in marc_field.subfields
                ]
            else:
                marc_field.add_subfield(self.suppression_subfield, "1")
            return

        record.add_ordered_field(
            Field(
                tag=self.suppression_tag,
                indicators=Indicators(" ", " "),
                subfields=[Subfield(code=self.suppression_subfield, value="1")],
            )
        )
