from __future__ import annotations

from typing import Any, Optional

from .config_loader import PipelineConfig, load_pipeline_config, load_profile, parse_profile
from .errors import InputError, OutputWriteError, ProfileError, RunCancelled, TriSplitError
from .models import (
    ContactContext,
    ContactRecord,
    ExportOptions,
    FieldMapping,
    InputData,
    PhoneRecord,
    Profile,
    ProgressEvent,
    PropertyRecord,
    PropertySnapshot,
    RunOutcome,
    TransformDefinition,
)
from .normalization import (
    format_phone,
    is_corporate_name,
    normalize_email,
    normalize_name,
    normalize_state,
    normalize_text_key,
    normalize_zip,
    phone_digits,
    safe_get,
    standardize_address,
    title_case,
    warn_missing,
)
from .processor import UnifiedProcessor

__all__ = [
    "ContactContext",
    "ContactRecord",
    "ExportOptions",
    "FieldMapping",
    "InputData",
    "InputError",
    "OutputWriteError",
    "PhoneRecord",
    "PipelineConfig",
    "Profile",
    "ProfileError",
    "ProgressEvent",
    "PropertyRecord",
    "PropertySnapshot",
    "RunCancelled",
    "RunOutcome",
    "TransformDefinition",
    "TriSplitError",
    "UnifiedProcessor",
    "build_processor",
    "format_phone",
    "is_corporate_name",
    "load_config",
    "load_pipeline_config",
    "load_profile",
    "normalize_email",
    "normalize_name",
    "normalize_state",
    "normalize_text_key",
    "normalize_zip",
    "parse_profile",
    "phone_digits",
    "safe_get",
    "standardize_address",
    "title_case",
    "to_profile",
    "warn_missing",
]


def load_config(args: Any) -> PipelineConfig:
    return load_pipeline_config(args)


def to_profile(payload: Any) -> Profile:
    if isinstance(payload, Profile):
        return payload
    if isinstance(payload, dict):
        return parse_profile(payload)
    raise TypeError(f"Unsupported profile payload type: {type(payload)!r}")


def build_processor(
    profile: Any, secondary_contacts: Optional[bool] = None, **kwargs: Any
) -> UnifiedProcessor:
    return UnifiedProcessor(to_profile(profile), secondary_contacts=secondary_contacts, **kwargs)
