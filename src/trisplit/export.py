from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Sequence, TypeVar

from .identity import PersistenceEngine
from .models import ContactRecord, PhoneRecord, PropertyRecord

CONTACTS = "contacts"
PHONES = "phones"
PROPERTIES = "properties"
KINDS = (CONTACTS, PHONES, PROPERTIES)

PRIMARY = "primary"
SECONDARY = "secondary"

LINKED_CONTACT_ID = "Linked Contact ID"

CONTACT_COLUMNS = [
    "Import ID",
    "First Name",
    "Last Name",
    "Email",
    "Company",
    LINKED_CONTACT_ID,
    "Association Label",
    "Data Source",
    "Data Type",
    "Tags",
]
PHONE_COLUMNS = ["Import ID", "Phone Number", "Data Source"]
PROPERTY_COLUMNS = [
    "Import ID",
    "Address",
    "City",
    "State",
    "Postal Code",
    "County",
    "Property Type",
    "Property Value",
    "Property Group",
    "Association Label",
    "Data Source",
    "Data Type",
    "Tags",
]

RecordT = TypeVar("RecordT", ContactRecord, PhoneRecord, PropertyRecord)


@dataclass
class ExportSet:
    kind: str
    partition: str
    columns: List[str] = field(default_factory=list)
    rows: List[Dict[str, str]] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.rows)


def contact_row(record: ContactRecord) -> Dict[str, str]:
    row = {
        "Import ID": record.import_id,
        "First Name": record.first_name,
        "Last Name": record.last_name,
        "Email": record.email,
        "Company": record.company,
        LINKED_CONTACT_ID: record.linked_contact_id or "",
        "Association Label": record.association_label,
        "Data Source": record.data_source,
        "Data Type": record.data_type,
        "Tags": record.tags,
    }
    for name, value in record.additional_fields.items():
        row.setdefault(name, value)
    return row


def phone_row(record: PhoneRecord) -> Dict[str, str]:
    row = {
        "Import ID": record.import_id,
        "Phone Number": record.phone_number,
        "Data Source": record.data_source,
    }
    for name, value in record.additional_fields.items():
        row.setdefault(name, value)
    return row


def property_row(record: PropertyRecord) -> Dict[str, str]:
    row = {
        "Import ID": record.import_id,
        "Address": record.address,
        "City": record.city,
        "State": record.state,
        "Postal Code": record.zip,
        "County": record.county,
        "Property Type": record.property_type,
        "Property Value": record.property_value,
        "Property Group": record.property_group,
        "Association Label": record.association_label,
        "Data Source": record.data_source,
        "Data Type": record.data_type,
        "Tags": record.tags,
    }
    for name, value in record.additional_fields.items():
        row.setdefault(name, value)
    return row


def _populated_columns(
    base: Sequence[str], registry: Iterable[str], rows: Sequence[Dict[str, str]]
) -> List[str]:
    columns = [
        column
        for column in base
        if column != LINKED_CONTACT_ID or any(row.get(LINKED_CONTACT_ID) for row in rows)
    ]
    for name in registry:
        if name in columns:
            continue
        if any((row.get(name) or "").strip() for row in rows):
            columns.append(name)
    return columns


class ExportAssembler:
    """Turns the engine's stores into ordered, partitioned row sets per entity kind."""

    def __init__(self, engine: PersistenceEngine, secondary_mode: bool = False):
        self.engine = engine
        self.secondary_mode = secondary_mode

    def _partition(self, records: Iterable[RecordT]) -> Dict[str, List[RecordT]]:
        partitions: Dict[str, List[RecordT]] = {PRIMARY: [], SECONDARY: []}
        for record in records:
            if self.secondary_mode and record.is_secondary:
                partitions[SECONDARY].append(record)
            else:
                partitions[PRIMARY].append(record)
        return partitions

    def _build(
        self,
        kind: str,
        records: Iterable[RecordT],
        to_row: Callable[[RecordT], Dict[str, str]],
        base: Sequence[str],
        registry: Iterable[str],
    ) -> Dict[str, ExportSet]:
        registry = list(registry)
        sets: Dict[str, ExportSet] = {}
        for partition, members in self._partition(records).items():
            rows = [to_row(record) for record in members]
            sets[partition] = ExportSet(
                kind=kind,
                partition=partition,
                columns=_populated_columns(base, registry, rows),
                rows=rows,
            )
        return sets

    def contacts(self) -> Dict[str, ExportSet]:
        ordered = sorted(
            self.engine.contacts.values(),
            key=lambda record: (
                record.last_name.lower(),
                record.first_name.lower(),
                record.import_id,
            ),
        )
        return self._build(
            CONTACTS, ordered, contact_row, CONTACT_COLUMNS, self.engine.contact_columns
        )

    def phones(self) -> Dict[str, ExportSet]:
        # sorted() is stable, so numbers keep insertion order within one import id
        ordered = sorted(self.engine.phones.values(), key=lambda record: record.import_id)
        return self._build(PHONES, ordered, phone_row, PHONE_COLUMNS, self.engine.phone_columns)

    def properties(self) -> Dict[str, ExportSet]:
        ordered = sorted(
            self.engine.properties.values(),
            key=lambda record: (record.address.lower(), record.import_id),
        )
        return self._build(
            PROPERTIES, ordered, property_row, PROPERTY_COLUMNS, self.engine.property_columns
        )

    def assemble(self) -> Dict[str, Dict[str, ExportSet]]:
        return {
            CONTACTS: self.contacts(),
            PHONES: self.phones(),
            PROPERTIES: self.properties(),
        }

    def record_counts(
        self, sets: Optional[Dict[str, Dict[str, ExportSet]]] = None
    ) -> Dict[str, Dict[str, int]]:
        sets = sets if sets is not None else self.assemble()
        return {
            kind: {partition: len(export_set) for partition, export_set in by_partition.items()}
            for kind, by_partition in sets.items()
        }
