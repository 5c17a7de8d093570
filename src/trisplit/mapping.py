from __future__ import annotations

import logging
import re
from collections import OrderedDict
from typing import Any, Dict, Iterable, List, Mapping, Optional, Set, Tuple

from .models import CONTACT, PHONE_NUMBER, PROPERTY, FieldMapping, Profile, PropertySnapshot
from .normalization import (
    collapse_whitespace,
    is_mailing_association,
    is_name_field,
    is_phone_field,
    is_phone_qualifier,
    is_zip_field,
    normalize_association,
    normalize_name,
    normalize_state,
    normalize_zip,
    phone_digits,
    safe_get,
    standardize_address,
    title_case,
)
from .transforms import apply_transforms

logger = logging.getLogger(__name__)

FIRST_NAME = "first_name"
LAST_NAME = "last_name"
FULL_NAME = "full_name"
EMAIL = "email"
COMPANY = "company"
GENERIC = "generic"
IDENTITY_TOKENS = (FIRST_NAME, LAST_NAME, FULL_NAME)

PHONE_NUMBER_FIELD = "phone_number"

CORE_PROPERTY_FIELDS = ("address", "city", "state", "zip")
PROPERTY_FIELDS = CORE_PROPERTY_FIELDS + ("county", "property_type", "property_value")

_FULL_NAME_QUALIFIERS = {"owner", "contact", "person", "full", "display", "primary", "co", "party"}
_NUMBER_WORDS = {"number", "num", "no", "phone", "mobile", "cell", "telephone", "tel"}
_ADDRESS_WORDS = {"address", "street", "addr"}
_PROPERTY_VALUE_KEYS = {"value", "propertyvalue", "estimatedvalue", "marketvalue", "estvalue"}


def _words(target: Optional[str]) -> List[str]:
    return re.sub(r"([a-z])([A-Z])", r"\1 \2", target or "").lower().replace("_", " ").split()


def _split_words(target: Optional[str]) -> List[str]:
    return [word for word in re.split(r"[^a-z0-9]+", " ".join(_words(target))) if word]


def format_group(group: Optional[str]) -> str:
    return collapse_whitespace(group)


def group_key(group: Optional[str]) -> str:
    return format_group(group).lower()


def contact_token(target: Optional[str]) -> str:
    words = _split_words(target)
    compact = "".join(words)
    if not compact:
        return GENERIC
    if "email" in compact:
        return EMAIL
    if compact in {"first", "fname", "givenname"} or ("first" in words and "name" in words):
        return FIRST_NAME
    if compact in {"last", "lname", "surname", "familyname"} or (
        "last" in words and "name" in words
    ):
        return LAST_NAME
    if compact.endswith("firstname"):
        return FIRST_NAME
    if compact.endswith("lastname"):
        return LAST_NAME
    if any(word in {"company", "organization", "organisation", "business", "entity"} for word in words):
        return COMPANY
    if compact == "fullname" or words[-1] == "name":
        qualifiers = [word for word in words[:-1] if not word.isdigit()]
        if all(word in _FULL_NAME_QUALIFIERS for word in qualifiers):
            return FULL_NAME
    return GENERIC


def property_field(target: Optional[str]) -> Optional[str]:
    words = _split_words(target)
    compact = "".join(words)
    if not compact:
        return None
    if is_zip_field(compact):
        return "zip"
    if "city" in words:
        return "city"
    if "state" in words or compact == "st":
        return "state"
    if "county" in words:
        return "county"
    if compact in _PROPERTY_VALUE_KEYS or compact.endswith("propertyvalue"):
        return "property_value"
    if compact in {"type", "propertytype", "landuse", "usetype"} or compact.endswith("propertytype"):
        return "property_type"
    if any(word in _ADDRESS_WORDS for word in words) and not any(
        word in {"2", "line2", "email"} for word in words
    ):
        return "address"
    return None


def phone_qualifier_header(target: Optional[str]) -> str:
    text = (target or "").lower()
    if "type" in text:
        return "Phone Type"
    if "status" in text:
        return "Phone Status"
    if "tag" in text:
        return "Phone Tag"
    return collapse_whitespace(target)


def is_phone_number_target(target: Optional[str]) -> bool:
    if is_phone_field(target):
        return True
    if is_phone_qualifier(target):
        return False
    words = [word for word in _split_words(target) if not word.isdigit()]
    return bool(words) and all(word in _NUMBER_WORDS for word in words)


class MappingResolver:
    def __init__(self, profile: Profile):
        self.profile = profile
        self.default_association = collapse_whitespace(profile.default_association) or "Owner"
        self.mailing_association = profile.mailing_association
        self.mappings: List[FieldMapping] = list(profile.mappings)
        self._columns: Dict[str, str] = {}
        self._warned_transforms: Set[str] = set()

    def bind_headers(self, headers: Iterable[str]) -> None:
        self._columns = {}
        self._warned_transforms = set()
        for header in headers:
            self._columns.setdefault(str(header).strip().lower(), header)

    def missing_source_columns(self, headers: Iterable[str]) -> List[str]:
        present = {str(header).strip().lower() for header in headers}
        missing: "OrderedDict[str, None]" = OrderedDict()
        for mapping in self.mappings:
            column = mapping.source_column
            if column and column.strip().lower() not in present:
                missing[column] = None
        return list(missing)

    def resolved_association(self, mapping: FieldMapping) -> str:
        return collapse_whitespace(mapping.association_label) or self.default_association

    def is_mailing(self, association: Optional[str]) -> bool:
        return is_mailing_association(association, self.mailing_association)

    def is_phone_mapping(self, mapping: FieldMapping) -> bool:
        if mapping.object_type == PHONE_NUMBER:
            return True
        if mapping.object_type == CONTACT:
            return "phone" in (mapping.target_property or "").lower()
        return False

    def mappings_for(self, object_type: str) -> List[FieldMapping]:
        if object_type == PHONE_NUMBER:
            return [mapping for mapping in self.mappings if self.is_phone_mapping(mapping)]
        if object_type == CONTACT:
            return [
                mapping
                for mapping in self.mappings
                if mapping.object_type == CONTACT and not self.is_phone_mapping(mapping)
            ]
        return [mapping for mapping in self.mappings if mapping.object_type == object_type]

    def _target_key(self, target: Optional[str], object_type: str) -> str:
        if object_type == CONTACT:
            token = contact_token(target)
            return token if token != GENERIC else f"generic:{collapse_whitespace(target).lower()}"
        if object_type == PROPERTY:
            field = property_field(target)
            return field or f"extra:{collapse_whitespace(target).lower()}"
        if is_phone_number_target(target):
            return PHONE_NUMBER_FIELD
        return phone_qualifier_header(target).lower()

    def _matches_association(self, mapping: FieldMapping, association: str) -> bool:
        return normalize_association(self.resolved_association(mapping)) == normalize_association(
            association
        )

    def _candidates(
        self,
        object_type: str,
        association: str,
        group: Optional[str],
        explicit_only: bool,
    ) -> List[FieldMapping]:
        wanted_group = group_key(group)
        preferred: List[FieldMapping] = []
        fallback: List[FieldMapping] = []
        for mapping in self.mappings_for(object_type):
            if group is not None and group_key(mapping.property_group) != wanted_group:
                continue
            if mapping.association_label.strip():
                if self._matches_association(mapping, association):
                    preferred.append(mapping)
            elif not explicit_only:
                fallback.append(mapping)
        return preferred + fallback

    def extract(self, row: Mapping[str, Any], mapping: FieldMapping) -> str:
        column = self._columns.get(mapping.source_column.strip().lower(), mapping.source_column)
        value = safe_get(row, column)
        if mapping.transforms:
            value = apply_transforms(value, mapping.transforms, row, self._warned_transforms)
        value = collapse_whitespace(value)
        if not value:
            return ""
        target = mapping.target_property
        if is_phone_field(target) or (
            mapping.object_type == PHONE_NUMBER and is_phone_number_target(target)
        ):
            return phone_digits(value)
        if is_zip_field(target):
            return normalize_zip(value)
        if is_name_field(target):
            return normalize_name(value)
        return value

    def resolve(
        self,
        row: Mapping[str, Any],
        association: str,
        target_property: str,
        object_type: str,
        group: Optional[str] = "",
        explicit_only: bool = False,
    ) -> str:
        wanted = self._target_key(target_property, object_type)
        first_value: Optional[str] = None
        for mapping in self._candidates(object_type, association, group, explicit_only):
            if self._target_key(mapping.target_property, object_type) != wanted:
                continue
            value = self.extract(row, mapping)
            if value:
                return value
            if first_value is None:
                first_value = value
        return first_value or ""

    def contact_buckets(self) -> "OrderedDict[str, Tuple[str, List[FieldMapping]]]":
        buckets: "OrderedDict[str, Tuple[str, List[FieldMapping]]]" = OrderedDict()
        for mapping in self.mappings_for(CONTACT):
            label = self.resolved_association(mapping)
            key = normalize_association(label)
            if key not in buckets:
                buckets[key] = (label, [])
            buckets[key][1].append(mapping)
        return buckets

    def property_groups_for(self, association: str) -> List[str]:
        groups: "OrderedDict[str, str]" = OrderedDict([("", "")])
        for mapping in self.mappings_for(PROPERTY):
            if mapping.association_label.strip() and not self._matches_association(
                mapping, association
            ):
                continue
            groups.setdefault(group_key(mapping.property_group), format_group(mapping.property_group))
        return list(groups.values())

    def property_associations(self) -> List[str]:
        labels: "OrderedDict[str, str]" = OrderedDict()
        for mapping in self.mappings_for(PROPERTY):
            label = collapse_whitespace(mapping.association_label)
            if label:
                labels.setdefault(label.lower(), label)
        return list(labels.values())

    def mailing_associations(self) -> List[str]:
        labels: "OrderedDict[str, str]" = OrderedDict()
        for mapping in self.mappings:
            if mapping.object_type == PHONE_NUMBER:
                continue
            label = collapse_whitespace(mapping.association_label)
            if label and self.is_mailing(label):
                labels.setdefault(label.lower(), label)
        return list(labels.values())

    def _extra_fields(
        self,
        row: Mapping[str, Any],
        association: str,
        group: Optional[str],
        explicit_only: bool,
    ) -> Dict[str, str]:
        extras: Dict[str, str] = {}
        for mapping in self._candidates(PROPERTY, association, group, explicit_only):
            if property_field(mapping.target_property) is not None:
                continue
            header = collapse_whitespace(mapping.target_property)
            if not header or extras.get(header):
                continue
            value = self.extract(row, mapping)
            if value or header not in extras:
                extras[header] = value
        return {key: value for key, value in extras.items() if value}

    def build_snapshot(
        self,
        row: Mapping[str, Any],
        association: str,
        group: Optional[str] = "",
        explicit_only: bool = False,
    ) -> PropertySnapshot:
        values = {
            name: self.resolve(row, association, name, PROPERTY, group, explicit_only)
            for name in PROPERTY_FIELDS
        }
        return PropertySnapshot(
            address=standardize_address(values["address"]),
            city=title_case(values["city"]),
            state=normalize_state(values["state"]),
            zip=normalize_zip(values["zip"]),
            county=title_case(values["county"]),
            property_type=values["property_type"],
            property_value=values["property_value"],
            additional_fields=self._extra_fields(row, association, group, explicit_only),
            property_group=format_group(group),
        )

    def build_mailing_snapshot(self, row: Mapping[str, Any]) -> Optional[PropertySnapshot]:
        for label in self.mailing_associations():
            snapshot = self.build_snapshot(row, label, group=None, explicit_only=True)
            if snapshot.has_core_address:
                return snapshot.without_property_metadata()
        return None
