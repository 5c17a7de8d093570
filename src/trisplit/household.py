from __future__ import annotations

import logging
from dataclasses import replace
from typing import Any, List, Mapping, Optional, Sequence

from .mapping import MappingResolver
from .models import ContactContext, PropertySnapshot
from .normalization import association_matches, core_address_matches, is_mailing_association

logger = logging.getLogger(__name__)


def same_surname(left: ContactContext, right: ContactContext) -> bool:
    mine = left.last_name.strip().lower()
    theirs = right.last_name.strip().lower()
    return bool(mine) and mine == theirs


def _mailing_from_property(snapshot: PropertySnapshot) -> PropertySnapshot:
    return replace(
        snapshot.without_property_metadata(), additional_fields={}, property_group=""
    )


class HouseholdResolver:
    """Applies the per-row household rules to contexts produced by the context builder.

    ``resolve`` runs before import ids exist; ``link`` runs once they are assigned.
    """

    def __init__(self, resolver: MappingResolver, secondary_mode: bool = False):
        profile = resolver.profile
        self.resolver = resolver
        self.secondary_mode = secondary_mode
        self.primary_tokens = list(profile.primary_associations)
        self.secondary_tokens = list(profile.secondary_associations)
        self.mailing_label = profile.mailing_association

    def shared_mailing(self, row: Mapping[str, Any]) -> Optional[PropertySnapshot]:
        return self.resolver.build_mailing_snapshot(row)

    def select_primary(self, contexts: Sequence[ContactContext]) -> Optional[ContactContext]:
        if not contexts:
            return None
        for context in contexts:
            if association_matches(context.association, self.primary_tokens):
                return context
        for context in contexts:
            if is_mailing_association(context.association, self.mailing_label):
                return context
        return contexts[0]

    def resolve(
        self, row: Mapping[str, Any], contexts: List[ContactContext]
    ) -> Optional[ContactContext]:
        primary = self.select_primary(contexts)
        if primary is None:
            return None
        for context in contexts:
            context.is_primary = context is primary
            context.is_secondary = False
            context.shares_mailing_with_primary = False
            context.linked_contact_id = None

        shared = self.shared_mailing(row)
        if shared is not None and shared.has_core_address:
            primary.mailing = shared
            primary.mailing_inherited = False

        for context in contexts:
            if context is primary or context.mailing is not None:
                continue
            if primary.mailing is not None and same_surname(context, primary):
                context.mailing = primary.mailing
                context.mailing_inherited = True

        for context in contexts:
            if context.mailing is None and context.property is not None:
                if context.property.has_core_address:
                    context.mailing = _mailing_from_property(context.property)
                    context.mailing_inherited = True

        for context in contexts:
            if context is primary:
                continue
            context.shares_mailing_with_primary = self._shares_mailing(context, primary)
            context.is_secondary = self.secondary_mode and association_matches(
                context.association, self.secondary_tokens
            )
        return primary

    def _shares_mailing(self, context: ContactContext, primary: ContactContext) -> bool:
        if not same_surname(context, primary):
            return False
        if context.mailing is None or context.mailing_inherited:
            return True
        return core_address_matches(context.mailing, primary.mailing) or core_address_matches(
            context.mailing, primary.property
        )

    def link(self, contexts: Sequence[ContactContext]) -> None:
        primary = next((context for context in contexts if context.is_primary), None)
        if primary is None:
            return
        primary.linked_contact_id = None
        for context in contexts:
            if context is primary:
                continue
            if self.secondary_mode and (context.shares_mailing_with_primary or context.is_secondary):
                context.linked_contact_id = primary.import_id
            else:
                context.linked_contact_id = None
