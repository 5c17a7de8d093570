from __future__ import annotations

import builtins
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple

CONTACT = "Contact"
PHONE_NUMBER = "Phone Number"
PROPERTY = "Property"

DEFAULT_ASSOCIATION = "Owner"
MAILING_ASSOCIATION = "Mailing Address"
DEFAULT_PRIMARY_ASSOCIATIONS = ("Owner", "Executor")
DEFAULT_SECONDARY_ASSOCIATIONS = ("Relative", "Associate")

SEVERITY_INFO = "info"
SEVERITY_WARNING = "warning"
SEVERITY_ERROR = "error"


def normalize_object_type(value: Optional[str]) -> str:
    text = (value or "").strip().lower()
    if not text:
        return CONTACT
    if text.replace(" ", "").replace("_", "") in {"phonenumber", "phone", "phones"}:
        return PHONE_NUMBER
    if text in {"property", "properties"}:
        return PROPERTY
    return CONTACT


def _pick(payload: Dict[str, Any], *names: str, default: Any = None) -> Any:
    for name in names:
        if name in payload and payload[name] is not None:
            return payload[name]
    return default


def _text(value: Any) -> str:
    return str(value or "").strip()


def _text_list(values: Any) -> List[str]:
    if values is None:
        return []
    if isinstance(values, str):
        values = values.split(",")
    return [str(value).strip() for value in values if str(value or "").strip()]


def group_label_key(label: Any) -> str:
    return " ".join(str(label or "").split()).lower()


GROUP_SECTIONS = {
    PROPERTY: ("property", "properties", "Property", "propertyGroups", "PropertyGroups"),
    CONTACT: ("contact", "contacts", "Contact", "contactGroups", "ContactGroups"),
    PHONE_NUMBER: ("phone", "phones", "Phone", "phoneGroups", "PhoneGroups"),
}


@dataclass(frozen=True)
class GroupDefaults:
    """Data source, data type and tags stamped on every record of one group."""

    data_source: str = ""
    data_type: str = ""
    tags: Tuple[str, ...] = ()

    @staticmethod
    def from_mapping(payload: Dict[str, Any]) -> "GroupDefaults":
        return GroupDefaults(
            data_source=_text(_pick(payload, "data_source", "dataSource", "DataSource")),
            data_type=_text(_pick(payload, "data_type", "dataType", "DataType")),
            tags=tuple(_text_list(_pick(payload, "tags", "Tags"))),
        )


def _group_table(groups: Dict[str, Any], object_type: str) -> Dict[str, GroupDefaults]:
    section = _pick(groups, *GROUP_SECTIONS[object_type], default={}) or {}
    table: Dict[str, GroupDefaults] = {}
    for label, value in section.items():
        if not isinstance(value, GroupDefaults):
            value = GroupDefaults.from_mapping(value)
        table[group_label_key(label)] = value
    return table


@dataclass(frozen=True)
class TransformDefinition:
    verb: str
    arguments: Tuple[str, ...] = ()

    @staticmethod
    def from_mapping(payload: Any) -> "TransformDefinition":
        if isinstance(payload, str):
            return TransformDefinition(verb=payload.strip().lower())
        verb = _text(_pick(payload, "verb", "Verb", "key", "Key", "type", "Type"))
        arguments = tuple(str(arg) for arg in (_pick(payload, "arguments", "Arguments", "args") or []))
        return TransformDefinition(verb=verb.lower(), arguments=arguments)


@dataclass(frozen=True)
class FieldMapping:
    source_column: str
    target_property: str
    association_label: str = ""
    object_type: str = CONTACT
    property_group: str = ""
    transforms: Tuple[TransformDefinition, ...] = ()
    data_source_override: str = ""
    tags_override: Tuple[str, ...] = ()

    @staticmethod
    def from_mapping(payload: Dict[str, Any]) -> "FieldMapping":
        transforms = _pick(payload, "transforms", "Transforms", default=[]) or []
        single = _pick(payload, "transform", "Transform")
        if single:
            transforms = list(transforms) + [single]
        return FieldMapping(
            source_column=_text(
                _pick(payload, "source_column", "sourceColumn", "SourceColumn", "SourceField")
            ),
            target_property=_text(
                _pick(payload, "target_property", "targetProperty", "TargetProperty", "HubSpotHeader")
            ),
            association_label=_text(
                _pick(
                    payload,
                    "association_label",
                    "associationLabel",
                    "AssociationLabel",
                    "AssociationLabelOverride",
                )
            ),
            object_type=normalize_object_type(
                _pick(payload, "object_type", "objectType", "ObjectType")
            ),
            property_group=_text(
                _pick(payload, "property_group", "propertyGroup", "PropertyGroup")
            ),
            transforms=tuple(TransformDefinition.from_mapping(item) for item in transforms),
            data_source_override=_text(
                _pick(payload, "data_source_override", "dataSourceOverride", "DataSourceOverride")
            ),
            tags_override=tuple(
                _text_list(_pick(payload, "tags_override", "tagsOverride", "TagsOverride"))
            ),
        )


@dataclass
class Profile:
    name: str = ""
    mappings: List[FieldMapping] = field(default_factory=list)
    dedupe_keys: List[str] = field(default_factory=list)
    create_secondary_contacts_file: bool = False
    default_association: str = DEFAULT_ASSOCIATION
    primary_associations: List[str] = field(
        default_factory=lambda: list(DEFAULT_PRIMARY_ASSOCIATIONS)
    )
    secondary_associations: List[str] = field(
        default_factory=lambda: list(DEFAULT_SECONDARY_ASSOCIATIONS)
    )
    mailing_association: str = MAILING_ASSOCIATION
    missing_header_behavior: str = "error"
    malformed_phone_policy: str = "passthrough"
    data_source: str = ""
    data_type: str = ""
    tags: List[str] = field(default_factory=list)
    property_groups: Dict[str, GroupDefaults] = field(default_factory=dict)
    contact_groups: Dict[str, GroupDefaults] = field(default_factory=dict)
    phone_groups: Dict[str, GroupDefaults] = field(default_factory=dict)

    @classmethod
    def from_mapping(cls, payload: Dict[str, Any]) -> "Profile":
        metadata = _pick(payload, "metadata", "Metadata", default={}) or {}
        mappings = _pick(payload, "mappings", "Mappings", default=[]) or []
        groups = _pick(payload, "groups", "Groups", default={}) or {}
        return cls(
            name=_text(_pick(payload, "name", "Name")),
            mappings=[
                item if isinstance(item, FieldMapping) else FieldMapping.from_mapping(item)
                for item in mappings
            ],
            dedupe_keys=_text_list(_pick(payload, "dedupe_keys", "dedupeKeys", "DedupeKeys")),
            create_secondary_contacts_file=bool(
                _pick(
                    payload,
                    "create_secondary_contacts_file",
                    "createSecondaryContactsFile",
                    "CreateSecondaryContactsFile",
                    default=False,
                )
            ),
            default_association=_text(
                _pick(payload, "default_association", "defaultAssociation", "DefaultAssociation")
            )
            or DEFAULT_ASSOCIATION,
            primary_associations=_text_list(
                _pick(payload, "primary_associations", "primaryAssociations", "PrimaryAssociations")
            )
            or list(DEFAULT_PRIMARY_ASSOCIATIONS),
            secondary_associations=_text_list(
                _pick(
                    payload,
                    "secondary_associations",
                    "secondaryAssociations",
                    "SecondaryAssociations",
                )
            )
            or list(DEFAULT_SECONDARY_ASSOCIATIONS),
            mailing_association=_text(
                _pick(payload, "mailing_association", "mailingAssociation", "MailingAssociation")
            )
            or MAILING_ASSOCIATION,
            missing_header_behavior=(
                _text(
                    _pick(
                        payload,
                        "missing_header_behavior",
                        "missingHeaderBehavior",
                        "MissingHeaderBehavior",
                    )
                )
                or "error"
            ).lower(),
            malformed_phone_policy=(
                _text(
                    _pick(
                        payload,
                        "malformed_phone_policy",
                        "malformedPhonePolicy",
                        "MalformedPhonePolicy",
                    )
                )
                or "passthrough"
            ).lower(),
            data_source=_text(
                _pick(payload, "data_source", "dataSource", "DataSource")
                or _pick(metadata, "DataSource", "data_source")
            ),
            data_type=_text(
                _pick(payload, "data_type", "dataType", "DataType")
                or _pick(metadata, "DataType", "data_type")
            ),
            tags=_text_list(_pick(payload, "tags", "Tags") or _pick(metadata, "Tags", "tags")),
            property_groups=_group_table(groups, PROPERTY),
            contact_groups=_group_table(groups, CONTACT),
            phone_groups=_group_table(groups, PHONE_NUMBER),
        )

    def group_defaults(self, object_type: str, label: Optional[str]) -> GroupDefaults:
        table = {
            PROPERTY: self.property_groups,
            CONTACT: self.contact_groups,
            PHONE_NUMBER: self.phone_groups,
        }[object_type]
        return table.get(group_label_key(label), GroupDefaults())


@dataclass
class ExportOptions:
    output_csv: bool = True
    output_excel: bool = False
    output_json: bool = False
    tag: Optional[str] = None

    def any_enabled(self) -> bool:
        return self.output_csv or self.output_excel or self.output_json

    def formats(self) -> List[str]:
        enabled = []
        if self.output_csv:
            enabled.append("csv")
        if self.output_excel:
            enabled.append("excel")
        if self.output_json:
            enabled.append("json")
        return enabled


@dataclass(frozen=True)
class PropertySnapshot:
    address: str = ""
    city: str = ""
    state: str = ""
    zip: str = ""
    county: str = ""
    property_type: str = ""
    property_value: str = ""
    additional_fields: Dict[str, str] = field(default_factory=dict)
    property_group: str = ""

    @property
    def has_core_address(self) -> bool:
        return any(value.strip() for value in (self.address, self.city, self.state, self.zip))

    @property
    def has_extra_data(self) -> bool:
        return any((value or "").strip() for value in self.additional_fields.values())

    @property
    def is_empty(self) -> bool:
        return not (
            self.has_core_address
            or self.has_extra_data
            or self.county.strip()
            or self.property_type.strip()
            or self.property_value.strip()
        )

    def without_property_metadata(self) -> "PropertySnapshot":
        return replace(self, property_type="", property_value="")


@dataclass
class ContactContext:
    association: str
    owner_index: int = 1
    first_name: str = ""
    last_name: str = ""
    email: str = ""
    company: str = ""
    property: Optional[PropertySnapshot] = None
    mailing: Optional[PropertySnapshot] = None
    mailing_inherited: bool = False
    property_groups: Dict[str, PropertySnapshot] = field(default_factory=dict)
    additional_fields: Dict[str, str] = field(default_factory=dict)
    is_primary: bool = False
    is_secondary: bool = False
    shares_mailing_with_primary: bool = False
    linked_contact_id: Optional[str] = None
    import_id: str = ""

    @builtins.property
    def has_identity(self) -> bool:
        return any(value.strip() for value in (self.first_name, self.last_name, self.email, self.company))

    @builtins.property
    def display_name(self) -> str:
        name = " ".join(part for part in (self.first_name, self.last_name) if part)
        return name or self.company or self.email or self.association


@dataclass
class ContactRecord:
    import_id: str
    first_name: str = ""
    last_name: str = ""
    email: str = ""
    company: str = ""
    linked_contact_id: Optional[str] = None
    is_secondary: bool = False
    association_label: str = ""
    data_source: str = ""
    data_type: str = ""
    tags: str = ""
    additional_fields: Dict[str, str] = field(default_factory=dict)


@dataclass
class PhoneRecord:
    import_id: str
    phone_number: str
    is_secondary: bool = False
    data_source: str = ""
    additional_fields: Dict[str, str] = field(default_factory=dict)


@dataclass
class PropertyRecord:
    import_id: str
    address: str = ""
    city: str = ""
    state: str = ""
    zip: str = ""
    county: str = ""
    property_type: str = ""
    property_value: str = ""
    association_label: str = ""
    property_group: str = ""
    role: str = "property"
    is_secondary: bool = False
    address_city_state_key: str = ""
    address_zip_key: str = ""
    data_source: str = ""
    data_type: str = ""
    tags: str = ""
    additional_fields: Dict[str, str] = field(default_factory=dict)


@dataclass
class InputData:
    headers: List[str] = field(default_factory=list)
    rows: Iterable[Dict[str, Any]] = field(default_factory=list)
    total_rows: int = 0
    source_file: str = ""


@dataclass(frozen=True)
class ProgressEvent:
    percent: int
    message: str
    severity: str = SEVERITY_INFO
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class RunOutcome:
    success: bool = False
    files: Dict[str, Dict[str, str]] = field(default_factory=dict)
    record_counts: Dict[str, Dict[str, int]] = field(default_factory=dict)
    rows_processed: int = 0
    rows_skipped: int = 0
    warnings: List[str] = field(default_factory=list)
    error_message: Optional[str] = None
    failed_stage: Optional[str] = None
    failure_log_path: Optional[str] = None

    def all_files(self) -> List[str]:
        return [path for by_kind in self.files.values() for path in by_kind.values() if path]
