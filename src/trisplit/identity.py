from __future__ import annotations

import logging
import re
import uuid
from collections import OrderedDict
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from .errors import ProfileError
from .mapping import (
    MappingResolver,
    format_group,
    group_key,
    is_phone_number_target,
    phone_qualifier_header,
)
from .models import (
    CONTACT,
    PHONE_NUMBER,
    PROPERTY,
    ContactContext,
    ContactRecord,
    FieldMapping,
    GroupDefaults,
    PhoneRecord,
    Profile,
    PropertyRecord,
    PropertySnapshot,
    group_label_key,
)
from .normalization import (
    association_root,
    core_address_matches,
    format_phone,
    is_mailing_association,
    is_plausible_phone,
    is_well_formed_phone,
    normalize_association,
    normalize_state,
    normalize_text_key,
    normalize_zip,
    phone_digits,
    union_labels,
)

logger = logging.getLogger(__name__)

ADDRESS_TOKENS = ("address", "city", "state", "zip")
DEFAULT_DEDUPE_KEYS = ("association", "first_name", "last_name", "email", "company") + ADDRESS_TOKENS
VALID_DEDUPE_TOKENS = (
    set(DEFAULT_DEDUPE_KEYS)
    | {f"mailing_{token}" for token in ADDRESS_TOKENS}
    | {f"property_{token}" for token in ADDRESS_TOKENS}
)
_TOKEN_ALIASES = {
    "firstname": "first_name",
    "first": "first_name",
    "lastname": "last_name",
    "last": "last_name",
    "surname": "last_name",
    "emailaddress": "email",
    "companyname": "company",
    "postalcode": "zip",
    "postal": "zip",
    "zipcode": "zip",
    "association_label": "association",
    "associationlabel": "association",
}

PROPERTY_ROLE = "property"
MAILING_ROLE = "mailing"

_OWNER_INDEX_RE = re.compile(r"owner\s*#?\s*(\d+)", re.IGNORECASE)
_OWNER_ORDINAL_RE = re.compile(r"\b(first|second|third|fourth|primary)\s*owner", re.IGNORECASE)
_CO_OWNER_RE = re.compile(r"\bco[\s_-]?owner\b", re.IGNORECASE)
_ORDINAL_INDEX = {"first": 1, "primary": 1, "second": 2, "third": 3, "fourth": 4}
_SLOT_STOP_WORDS = {"phone", "number", "num", "no", "type", "status", "tag", "tags", "owner", "co"}

WarnCallback = Callable[[str], None]


def normalize_dedupe_token(token: str) -> str:
    text = re.sub(r"[\s\-]+", "_", (token or "").strip().lower())
    compact = text.replace("_", "")
    for prefix in ("mailing_", "property_"):
        if text.startswith(prefix):
            rest = normalize_dedupe_token(text[len(prefix):])
            return prefix + rest
    return _TOKEN_ALIASES.get(compact, _TOKEN_ALIASES.get(text, text))


def validate_dedupe_keys(tokens: Iterable[str]) -> List[str]:
    normalized = [normalize_dedupe_token(token) for token in tokens if (token or "").strip()]
    unknown = [token for token in normalized if token not in VALID_DEDUPE_TOKENS]
    if unknown:
        raise ProfileError(f"Unknown dedupe key token(s): {', '.join(unknown)}")
    return normalized


def _address_source(context: ContactContext, token: str) -> Tuple[Optional[PropertySnapshot], str]:
    if token.startswith("mailing_"):
        return context.mailing, token[len("mailing_"):]
    if token.startswith("property_"):
        return context.property, token[len("property_"):]
    if context.mailing is not None and context.mailing.has_core_address:
        return context.mailing, token
    return context.property, token


def dedupe_value(context: ContactContext, token: str) -> str:
    if token == "association":
        return normalize_association(context.association)
    if token in ("first_name", "last_name", "email", "company"):
        return normalize_text_key(getattr(context, token))
    snapshot, field_name = _address_source(context, token)
    if snapshot is None:
        return ""
    value = getattr(snapshot, field_name, "")
    if field_name == "state":
        return normalize_state(value).lower()
    if field_name == "zip":
        return normalize_zip(value)
    return normalize_text_key(value)


def build_dedupe_key(context: ContactContext, tokens: Sequence[str]) -> str:
    return "|".join(dedupe_value(context, token) for token in tokens)


class IdentityTable:
    """Run-scoped dedupe key -> import id table."""

    def __init__(self) -> None:
        self._ids: Dict[str, str] = {}

    def assign(self, key: str) -> str:
        import_id = self._ids.get(key)
        if import_id is None:
            import_id = str(uuid.uuid4())
            self._ids[key] = import_id
        return import_id

    def __len__(self) -> int:
        return len(self._ids)

    def __contains__(self, key: object) -> bool:
        return key in self._ids


def parse_owner_index(text: str) -> Optional[int]:
    match = _OWNER_INDEX_RE.search(text or "")
    if match:
        return int(match.group(1))
    match = _OWNER_ORDINAL_RE.search(text or "")
    if match:
        return _ORDINAL_INDEX[match.group(1).lower()]
    if _CO_OWNER_RE.search(text or ""):
        return 2
    return None


def slot_identifier(column: str) -> str:
    """'Phone1' and 'Phone1Type' share slot '1'; 'Mobile' and 'Mobile Status' share 'mobile'."""
    text = re.sub(r"([a-z])([A-Z])", r"\1 \2", column or "").lower()
    text = _OWNER_INDEX_RE.sub(" ", text)
    text = _OWNER_ORDINAL_RE.sub(" ", text)
    text = _CO_OWNER_RE.sub(" ", text)
    digits = re.search(r"\d+", text)
    if digits:
        return str(int(digits.group(0)))
    words = [word for word in re.split(r"[^a-z]+", text) if word and word not in _SLOT_STOP_WORDS]
    return " ".join(words)


def mapping_slot(mapping: FieldMapping) -> str:
    return slot_identifier(mapping.source_column) or slot_identifier(mapping.target_property)


def _distinct(values: Iterable[str]) -> List[str]:
    seen: "OrderedDict[str, str]" = OrderedDict()
    for value in values:
        value = (value or "").strip()
        if value:
            seen.setdefault(value.lower(), value)
    return list(seen.values())


def resolve_group_metadata(
    defaults: GroupDefaults,
    mappings: Sequence[FieldMapping],
    fallback: GroupDefaults,
    label: str,
    warn: WarnCallback,
) -> GroupDefaults:
    """Mapping overrides win over the group's defaults, which win over the profile-wide values.

    The first data source override is used; a second distinct one is reported
    through ``warn``. Tag overrides from every mapping of the group are unioned.
    """
    data_source = defaults.data_source
    sources = _distinct(mapping.data_source_override for mapping in mappings)
    if len(sources) > 1:
        warn(f"Multiple data source overrides defined for {label}; using '{sources[0]}'")
    if sources:
        data_source = sources[0]
    tags = tuple(_distinct(tag for mapping in mappings for tag in mapping.tags_override))
    return GroupDefaults(
        data_source=data_source or fallback.data_source,
        data_type=defaults.data_type or fallback.data_type,
        tags=tags or defaults.tags or fallback.tags,
    )


def property_dedupe_keys(address: str, city: str, state: str, zip_code: str) -> Tuple[str, str]:
    street = normalize_text_key(address)
    city_state = "|".join([street, normalize_text_key(city), normalize_state(state).lower()])
    street_zip = "|".join([street, normalize_zip(zip_code)])
    return city_state, street_zip


class _PhoneSlot:
    def __init__(self, owner: ContactContext, source: str, identifier: str):
        self.owner = owner
        self.source = source
        self.identifier = identifier
        self.number = ""
        self.fields: "OrderedDict[str, str]" = OrderedDict()


class PersistenceEngine:
    def __init__(
        self,
        profile: Profile,
        secondary_mode: bool = False,
        export_tag: Optional[str] = None,
        warn: Optional[WarnCallback] = None,
    ):
        self.profile = profile
        self.secondary_mode = secondary_mode
        self.dedupe_keys = validate_dedupe_keys(profile.dedupe_keys) or list(DEFAULT_DEDUPE_KEYS)
        self.export_tag = (export_tag or "").strip()
        self.profile_metadata = GroupDefaults(
            profile.data_source, profile.data_type, tuple(profile.tags)
        )
        self._resolver = MappingResolver(profile)
        self._warn_callback = warn
        self.reset()

    def reset(self) -> None:
        self.identity = IdentityTable()
        self.contacts: "OrderedDict[str, ContactRecord]" = OrderedDict()
        self.phones: "OrderedDict[str, PhoneRecord]" = OrderedDict()
        self.properties: "OrderedDict[str, PropertyRecord]" = OrderedDict()
        self.contact_columns: "OrderedDict[str, None]" = OrderedDict()
        self.phone_columns: "OrderedDict[str, None]" = OrderedDict()
        self.property_columns: "OrderedDict[str, None]" = OrderedDict()
        self.conflicts = 0
        self._group_metadata: Dict[Tuple[str, str], GroupDefaults] = {}

    def _warn(self, message: str) -> None:
        if self._warn_callback is not None:
            self._warn_callback(message)
        else:
            logger.warning(message)

    # group metadata

    def _group_mappings(self, object_type: str, key: str) -> List[FieldMapping]:
        resolver = self._resolver
        if object_type == CONTACT:
            return [
                mapping
                for mapping in resolver.mappings_for(CONTACT)
                if normalize_association(resolver.resolved_association(mapping)) == key
            ]
        if object_type == PHONE_NUMBER:
            return [
                mapping
                for mapping in resolver.mappings_for(PHONE_NUMBER)
                if group_label_key(mapping_slot(mapping)) == key
            ]
        return [
            mapping
            for mapping in resolver.mappings_for(PROPERTY)
            if group_key(mapping.property_group) == key
        ]

    def group_metadata(self, object_type: str, label: Optional[str]) -> GroupDefaults:
        key = group_label_key(label)
        metadata = self._group_metadata.get((object_type, key))
        if metadata is None:
            metadata = resolve_group_metadata(
                self.profile.group_defaults(object_type, key),
                self._group_mappings(object_type, key),
                self.profile_metadata,
                f"{object_type.lower()} group '{key}'",
                self._warn,
            )
            self._group_metadata[(object_type, key)] = metadata
        return metadata

    def tags_for(self, metadata: GroupDefaults) -> str:
        return self.export_tag or union_labels(*metadata.tags)

    # identity

    def assign_import_id(self, context: ContactContext) -> str:
        context.import_id = self.identity.assign(build_dedupe_key(context, self.dedupe_keys))
        return context.import_id

    # contacts

    @staticmethod
    def _identity_matches(record: ContactRecord, context: ContactContext) -> bool:
        if (record.first_name or record.last_name) and (context.first_name or context.last_name):
            return normalize_text_key(record.first_name) == normalize_text_key(
                context.first_name
            ) and normalize_text_key(record.last_name) == normalize_text_key(context.last_name)
        if record.email and context.email:
            return record.email.lower() == context.email.lower()
        if record.company and context.company:
            return normalize_text_key(record.company) == normalize_text_key(context.company)
        return False

    def _register(self, registry: "OrderedDict[str, None]", fields: Mapping[str, str]) -> None:
        for name, value in fields.items():
            if (value or "").strip():
                registry.setdefault(name, None)

    def persist_contact(self, context: ContactContext) -> Optional[ContactRecord]:
        if not context.has_identity:
            return None
        if not context.import_id:
            self.assign_import_id(context)
        record = self.contacts.get(context.import_id)
        if record is None:
            metadata = self.group_metadata(CONTACT, context.association)
            record = ContactRecord(
                import_id=context.import_id,
                first_name=context.first_name,
                last_name=context.last_name,
                email=context.email,
                company=context.company,
                linked_contact_id=self._incoming_link(context, context.import_id),
                is_secondary=context.is_secondary,
                association_label=union_labels(context.association),
                data_source=metadata.data_source,
                data_type=metadata.data_type,
                tags=self.tags_for(metadata),
                additional_fields=dict(context.additional_fields),
            )
            self.contacts[context.import_id] = record
            self._register(self.contact_columns, record.additional_fields)
            return record

        if not record.is_secondary and not context.is_secondary:
            if not self._identity_matches(record, context) and not context.shares_mailing_with_primary:
                self.conflicts += 1
                existing = " ".join(
                    part for part in (record.first_name, record.last_name) if part
                ) or record.company or record.email
                self._warn(
                    f"Primary contact conflict on import id {record.import_id}: "
                    f"'{context.display_name}' does not match existing '{existing}'"
                )
            if not record.linked_contact_id:
                record.linked_contact_id = self._incoming_link(context, record.import_id)
        elif record.is_secondary and not context.is_secondary:
            record.is_secondary = False
            record.linked_contact_id = None

        for name in ("first_name", "last_name", "email", "company"):
            if not getattr(record, name) and getattr(context, name):
                setattr(record, name, getattr(context, name))
        for name, value in context.additional_fields.items():
            if value and not record.additional_fields.get(name):
                record.additional_fields[name] = value
        record.association_label = union_labels(record.association_label, context.association)
        self._register(self.contact_columns, record.additional_fields)
        return record

    @staticmethod
    def _incoming_link(context: ContactContext, own_id: str) -> Optional[str]:
        if context.linked_contact_id and context.linked_contact_id != own_id:
            return context.linked_contact_id
        return None

    # properties

    def _property_key(self, import_id: str, role: str, snapshot: PropertySnapshot) -> str:
        return "|".join(
            [
                import_id,
                role,
                group_key(snapshot.property_group),
                normalize_text_key(snapshot.address),
                normalize_zip(snapshot.zip),
            ]
        )

    def _find_property(
        self, key: str, import_id: str, role: str, snapshot: PropertySnapshot
    ) -> Optional[PropertyRecord]:
        record = self.properties.get(key)
        if record is not None:
            return record
        wanted_group = group_key(snapshot.property_group)
        for candidate in self.properties.values():
            if (
                candidate.import_id == import_id
                and candidate.role == role
                and group_key(candidate.property_group) == wanted_group
                and core_address_matches(candidate, snapshot)
            ):
                return candidate
        return None

    def persist_property_snapshot(
        self,
        import_id: str,
        snapshot: Optional[PropertySnapshot],
        association_label: str,
        is_secondary: bool = False,
    ) -> Optional[PropertyRecord]:
        if snapshot is None or not import_id:
            return None
        mailing = is_mailing_association(association_label, self.profile.mailing_association)
        if mailing:
            snapshot = snapshot.without_property_metadata()
        if not snapshot.has_core_address and not snapshot.has_extra_data:
            return None
        role = MAILING_ROLE if mailing else PROPERTY_ROLE
        key = self._property_key(import_id, role, snapshot)
        record = self._find_property(key, import_id, role, snapshot)
        if record is None:
            metadata = self.group_metadata(PROPERTY, snapshot.property_group)
            record = PropertyRecord(
                import_id=import_id,
                address=snapshot.address,
                city=snapshot.city,
                state=snapshot.state,
                zip=snapshot.zip,
                county=snapshot.county,
                property_type=snapshot.property_type,
                property_value=snapshot.property_value,
                association_label=union_labels(association_label),
                property_group=format_group(snapshot.property_group),
                role=role,
                is_secondary=is_secondary,
                data_source=metadata.data_source,
                data_type=metadata.data_type,
                tags=self.tags_for(metadata),
                additional_fields={k: v for k, v in snapshot.additional_fields.items() if v},
            )
            self.properties[key] = record
        else:
            for name in ("address", "city", "state", "zip", "county", "property_type", "property_value"):
                if not getattr(record, name) and getattr(snapshot, name):
                    setattr(record, name, getattr(snapshot, name))
            for name, value in snapshot.additional_fields.items():
                if value and not record.additional_fields.get(name):
                    record.additional_fields[name] = value
            record.association_label = union_labels(record.association_label, association_label)
            record.is_secondary = record.is_secondary or is_secondary
        record.address_city_state_key, record.address_zip_key = property_dedupe_keys(
            record.address, record.city, record.state, record.zip
        )
        self._register(self.property_columns, record.additional_fields)
        return record

    # phones

    def _owner_for(
        self,
        source: str,
        association_label: str,
        contexts: Sequence[ContactContext],
        primary: ContactContext,
    ) -> ContactContext:
        label = normalize_association(association_label)
        if label:
            for context in contexts:
                if normalize_association(context.association) == label:
                    return context
        index = parse_owner_index(source)
        if index is None:
            return primary
        root = association_root(primary.association)
        for context in contexts:
            numbered = re.search(r"(\d+)$", normalize_association(context.association))
            if (
                numbered
                and int(numbered.group(1)) == index
                and association_root(context.association) == root
            ):
                return context
        for context in contexts:
            if context.association == primary.association and context.owner_index == index:
                return context
        if 0 < index <= len(contexts):
            return contexts[index - 1]
        return primary

    def _collect_phone_slots(
        self,
        row: Mapping[str, Any],
        contexts: Sequence[ContactContext],
        primary: ContactContext,
        resolver: MappingResolver,
    ) -> "OrderedDict[Tuple[str, str], _PhoneSlot]":
        slots: "OrderedDict[Tuple[str, str], _PhoneSlot]" = OrderedDict()
        for mapping in resolver.mappings_for(PHONE_NUMBER):
            value = resolver.extract(row, mapping)
            if not value:
                continue
            source = mapping.source_column or mapping.target_property
            owner = self._owner_for(
                f"{source} {mapping.target_property}", mapping.association_label, contexts, primary
            )
            if not owner.import_id:
                continue
            identifier = mapping_slot(mapping)
            key = (owner.import_id, identifier)
            slot = slots.get(key)
            if slot is None:
                slot = slots[key] = _PhoneSlot(owner, source, identifier)
            if is_phone_number_target(mapping.target_property):
                if slot.number:
                    logger.debug("Second number for slot %s ignored: %s", identifier, source)
                    continue
                slot.number = value
            else:
                slot.fields.setdefault(phone_qualifier_header(mapping.target_property), value)
        return slots

    def process_phone_numbers(
        self,
        row: Mapping[str, Any],
        contexts: Sequence[ContactContext],
        primary: Optional[ContactContext],
        resolver: MappingResolver,
    ) -> List[PhoneRecord]:
        if primary is None or not contexts:
            return []
        persisted: List[PhoneRecord] = []
        for slot in self._collect_phone_slots(row, contexts, primary, resolver).values():
            if not slot.number:
                continue
            record = self.persist_phone(
                slot.owner, slot.number, slot.fields, slot.source, slot.identifier
            )
            if record is not None:
                persisted.append(record)
        return persisted

    def persist_phone(
        self,
        owner: ContactContext,
        number: str,
        fields: Mapping[str, str],
        source: str = "",
        slot: str = "",
    ) -> Optional[PhoneRecord]:
        digits = phone_digits(number)
        if not digits:
            return None
        if not is_well_formed_phone(digits):
            self._warn(f"Malformed phone number '{number}' in column '{source}' ({len(digits)} digits)")
            if self.profile.malformed_phone_policy == "reject":
                return None
        elif not is_plausible_phone(digits):
            logger.info("Phone number %s is not a valid US number; keeping it", digits)
        key = f"{owner.import_id}|{digits}"
        record = self.phones.get(key)
        if record is None:
            record = PhoneRecord(
                import_id=owner.import_id,
                phone_number=format_phone(digits),
                is_secondary=owner.is_secondary,
                data_source=self.group_metadata(PHONE_NUMBER, slot).data_source,
                additional_fields={k: v for k, v in fields.items() if v},
            )
            self.phones[key] = record
        else:
            for name, value in fields.items():
                if value and not record.additional_fields.get(name):
                    record.additional_fields[name] = value
            record.is_secondary = record.is_secondary or owner.is_secondary
        self._register(self.phone_columns, record.additional_fields)
        return record
