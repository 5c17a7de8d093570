from __future__ import annotations

import logging
from dataclasses import replace
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .mapping import (
    COMPANY,
    EMAIL,
    FIRST_NAME,
    FULL_NAME,
    LAST_NAME,
    MappingResolver,
    contact_token,
)
from .models import ContactContext, PropertySnapshot
from .normalization import collapse_whitespace, is_corporate_name, normalize_email

logger = logging.getLogger(__name__)


def split_full_name(value: str) -> Tuple[str, str]:
    text = collapse_whitespace(value)
    if not text:
        return "", ""
    if is_corporate_name(text):
        return text, ""
    parts = text.split(" ")
    if len(parts) == 1:
        return parts[0], ""
    return " ".join(parts[:-1]), parts[-1]


def _new_context(bucket: List[ContactContext], label: str) -> ContactContext:
    context = ContactContext(association=label, owner_index=len(bucket) + 1)
    bucket.append(context)
    return context


def _assign_identity(bucket: List[ContactContext], label: str, token: str, value: str) -> None:
    if token == FULL_NAME:
        first, last = split_full_name(value)
        target = next(
            (ctx for ctx in bucket if not ctx.first_name and not ctx.last_name), None
        ) or _new_context(bucket, label)
        target.first_name = first
        target.last_name = last
        return
    slot = "first_name" if token == FIRST_NAME else "last_name"
    target = next((ctx for ctx in bucket if not getattr(ctx, slot)), None) or _new_context(
        bucket, label
    )
    setattr(target, slot, value)


def _assign_attribute(
    bucket: List[ContactContext], label: str, slot: str, value: str, header: str
) -> None:
    target = next((ctx for ctx in bucket if not getattr(ctx, slot)), None)
    if target is not None:
        setattr(target, slot, value)
        return
    if bucket:
        carrier = next((ctx for ctx in bucket if ctx.first_name or ctx.last_name), bucket[0])
        carrier.additional_fields.setdefault(header, value)
        return
    setattr(_new_context(bucket, label), slot, value)


def _assign_generic(bucket: List[ContactContext], label: str, header: str, value: str) -> None:
    target = next((ctx for ctx in bucket if header not in ctx.additional_fields), None)
    if target is None:
        if bucket:
            logger.debug("Dropping extra value for %s; every %s context already has one", header, label)
            return
        target = _new_context(bucket, label)
    target.additional_fields[header] = value


def _choose_property(groups: Dict[str, PropertySnapshot]) -> Optional[PropertySnapshot]:
    default = groups.get("")
    if default is not None and default.has_core_address:
        return default
    for snapshot in groups.values():
        if snapshot.has_core_address:
            return snapshot
    if default is not None and not default.is_empty:
        return default
    for snapshot in groups.values():
        if not snapshot.is_empty:
            return snapshot
    return default


def _attach_properties(
    row: Mapping[str, Any],
    resolver: MappingResolver,
    label: str,
    bucket: List[ContactContext],
) -> None:
    groups: Dict[str, PropertySnapshot] = {}
    own_mailing: Optional[PropertySnapshot] = None
    for group in resolver.property_groups_for(label):
        snapshot = resolver.build_snapshot(row, label, group)
        if group and resolver.is_mailing(group):
            if own_mailing is None and snapshot.has_core_address:
                own_mailing = replace(snapshot.without_property_metadata(), property_group="")
            continue
        groups[group] = snapshot
    chosen = _choose_property(groups)
    for context in bucket:
        context.property_groups = dict(groups)
        context.property = chosen
        if own_mailing is not None:
            context.mailing = own_mailing
            context.mailing_inherited = False


def build_contexts(row: Mapping[str, Any], resolver: MappingResolver) -> List[ContactContext]:
    """Return contexts in build order: association buckets in profile order, owners within each."""
    contexts: List[ContactContext] = []
    for label, mappings in resolver.contact_buckets().values():
        bucket: List[ContactContext] = []
        for mapping in mappings:
            value = resolver.extract(row, mapping)
            if not value:
                continue
            token = contact_token(mapping.target_property)
            if token in (FIRST_NAME, LAST_NAME, FULL_NAME):
                _assign_identity(bucket, label, token, value)
            elif token == EMAIL:
                email = normalize_email(value)
                if email:
                    _assign_attribute(bucket, label, "email", email, mapping.target_property)
            elif token == COMPANY:
                _assign_attribute(bucket, label, "company", value, mapping.target_property)
            else:
                header = collapse_whitespace(mapping.target_property)
                _assign_generic(bucket, label, header, value)
        if not bucket:
            continue
        _attach_properties(row, resolver, label, bucket)
        contexts.extend(bucket)
    return contexts
