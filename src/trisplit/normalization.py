from __future__ import annotations

import logging
import os
import re
import unicodedata
from typing import Any, Dict, Iterable, List, Optional

import pandas as pd
import phonenumbers  # type: ignore
from email_validator import EmailNotValidError, validate_email  # type: ignore

logger = logging.getLogger(__name__)

STATE_ABBR = {
    "alabama": "AL",
    "alaska": "AK",
    "arizona": "AZ",
    "arkansas": "AR",
    "california": "CA",
    "colorado": "CO",
    "connecticut": "CT",
    "delaware": "DE",
    "florida": "FL",
    "georgia": "GA",
    "hawaii": "HI",
    "idaho": "ID",
    "illinois": "IL",
    "indiana": "IN",
    "iowa": "IA",
    "kansas": "KS",
    "kentucky": "KY",
    "louisiana": "LA",
    "maine": "ME",
    "maryland": "MD",
    "massachusetts": "MA",
    "michigan": "MI",
    "minnesota": "MN",
    "mississippi": "MS",
    "missouri": "MO",
    "montana": "MT",
    "nebraska": "NE",
    "nevada": "NV",
    "new hampshire": "NH",
    "new jersey": "NJ",
    "new mexico": "NM",
    "new york": "NY",
    "north carolina": "NC",
    "north dakota": "ND",
    "ohio": "OH",
    "oklahoma": "OK",
    "oregon": "OR",
    "pennsylvania": "PA",
    "rhode island": "RI",
    "south carolina": "SC",
    "south dakota": "SD",
    "tennessee": "TN",
    "texas": "TX",
    "utah": "UT",
    "vermont": "VT",
    "virginia": "VA",
    "washington": "WA",
    "west virginia": "WV",
    "wisconsin": "WI",
    "wyoming": "WY",
    "district of columbia": "DC",
    "dc": "DC",
    "puerto rico": "PR",
    "guam": "GU",
    "virgin islands": "VI",
}

# Words no person carries as a surname: corporate anywhere after the first token.
ENTITY_WORDS = {
    "CORPORATION",
    "COMPANY",
    "PARTNERSHIP",
    "HOLDINGS",
    "ASSOCIATES",
    "PROPERTIES",
    "INVESTMENTS",
    "REVOCABLE",
}

# Also plausible surnames ("John Bank"): corporate only as the last of three or more tokens.
AMBIGUOUS_ENTITY_WORDS = {"CO", "TRUST", "ESTATE", "GROUP", "CAPITAL", "BANK", "FUND", "LIVING"}

ENTITY_PHRASES = (
    ("FAMILY", "TRUST"),
    ("LIVING", "TRUST"),
    ("REVOCABLE", "TRUST"),
    ("ESTATE", "OF"),
    ("TRUST", "OF"),
)

# Suffixes that mark an entity even as the first token ("LLC" is never a given name).
STRICT_CORPORATE_SUFFIXES = {"LLC", "INC", "LLP", "LP", "CORP", "LTD", "PLLC", "PC"}

STREET_SUFFIXES = {
    "alley": "Aly",
    "aly": "Aly",
    "avenue": "Ave",
    "ave": "Ave",
    "av": "Ave",
    "boulevard": "Blvd",
    "blvd": "Blvd",
    "center": "Ctr",
    "ctr": "Ctr",
    "circle": "Cir",
    "cir": "Cir",
    "court": "Ct",
    "ct": "Ct",
    "crossing": "Xing",
    "xing": "Xing",
    "drive": "Dr",
    "dr": "Dr",
    "expressway": "Expy",
    "expy": "Expy",
    "freeway": "Fwy",
    "fwy": "Fwy",
    "heights": "Hts",
    "hts": "Hts",
    "highway": "Hwy",
    "hwy": "Hwy",
    "lane": "Ln",
    "ln": "Ln",
    "loop": "Loop",
    "parkway": "Pkwy",
    "pkwy": "Pkwy",
    "place": "Pl",
    "pl": "Pl",
    "ridge": "Rdg",
    "rdg": "Rdg",
    "road": "Rd",
    "rd": "Rd",
    "square": "Sq",
    "sq": "Sq",
    "street": "St",
    "st": "St",
    "str": "St",
    "terrace": "Ter",
    "ter": "Ter",
    "trail": "Trl",
    "trl": "Trl",
    "way": "Way",
}

DIRECTIONALS = {
    "north": "N",
    "n": "N",
    "south": "S",
    "s": "S",
    "east": "E",
    "e": "E",
    "west": "W",
    "w": "W",
    "northeast": "NE",
    "ne": "NE",
    "northwest": "NW",
    "nw": "NW",
    "southeast": "SE",
    "se": "SE",
    "southwest": "SW",
    "sw": "SW",
}

UNIT_DESIGNATORS = {
    "apartment": "Apt",
    "apt": "Apt",
    "suite": "Ste",
    "ste": "Ste",
    "unit": "Unit",
    "building": "Bldg",
    "bldg": "Bldg",
    "floor": "Fl",
    "fl": "Fl",
    "room": "Rm",
    "rm": "Rm",
    "lot": "Lot",
    "#": "#",
}

ORDINAL_WORDS = {
    "first": "1st",
    "second": "2nd",
    "third": "3rd",
    "fourth": "4th",
    "fifth": "5th",
    "sixth": "6th",
    "seventh": "7th",
    "eighth": "8th",
    "ninth": "9th",
    "tenth": "10th",
}

PHONE_QUALIFIER_TOKENS = ("type", "status", "tag")

_WORD_RE = re.compile(r"(?<![0-9A-Za-zÀ-ɏ])[A-Za-zÀ-ɏ]+")
_ORDINAL_RE = re.compile(r"^(\d+)(st|nd|rd|th)$", re.IGNORECASE)
_PO_BOX_RE = re.compile(r"^\s*p\.?\s*o\.?\s*box\b", re.IGNORECASE)


def _norm(text: Optional[str]) -> str:
    s = (text or "").strip()
    if not s:
        return ""
    s = unicodedata.normalize("NFKD", s)
    s = "".join(ch for ch in s if not unicodedata.combining(ch))
    return re.sub(r"\s+", " ", s).lower()


def normalize_text_key(value: str) -> str:
    return _norm(value)


def collapse_whitespace(value: Optional[str]) -> str:
    return re.sub(r"\s+", " ", (value or "")).strip()


def title_case(value: Optional[str]) -> str:
    text = collapse_whitespace(value)
    if not text:
        return ""
    return _WORD_RE.sub(lambda match: match.group(0)[0].upper() + match.group(0)[1:].lower(), text)


def _corporate_tokens(name: str) -> List[str]:
    tokens = [re.sub(r"[^A-Z0-9&]", "", token) for token in name.upper().split()]
    return [token for token in tokens if token]


def is_corporate_name(name: Optional[str]) -> bool:
    tokens = _corporate_tokens(name or "")
    if not tokens:
        return False
    if any(token in STRICT_CORPORATE_SUFFIXES for token in tokens):
        return True
    if any(pair in ENTITY_PHRASES for pair in zip(tokens, tokens[1:])):
        return True
    if any(token in ENTITY_WORDS for token in tokens[1:]):
        return True
    return len(tokens) >= 3 and tokens[-1] in AMBIGUOUS_ENTITY_WORDS


def normalize_name(value: Optional[str]) -> str:
    text = collapse_whitespace(value)
    if not text or is_corporate_name(text):
        return text
    return title_case(text)


def _case_address_token(token: str) -> str:
    ordinal = _ORDINAL_RE.match(token)
    if ordinal:
        return ordinal.group(1) + ordinal.group(2).lower()
    if any(ch.isdigit() for ch in token):
        return token.upper()
    return title_case(token)


def standardize_address(value: Optional[str]) -> str:
    text = collapse_whitespace(value)
    if not text:
        return ""
    po_box = _PO_BOX_RE.match(text)
    if po_box:
        rest = collapse_whitespace(text[po_box.end():])
        return f"PO Box {rest.upper()}".strip()

    tokens = [token.rstrip(".,") for token in text.split(" ")]
    tokens = [token for token in tokens if token]
    lowered = [token.lower() for token in tokens]

    unit_index = len(tokens)
    for index, token in enumerate(lowered):
        if index >= 2 and (token in UNIT_DESIGNATORS or token.startswith("#")):
            unit_index = index
            break

    out = [_case_address_token(token) for token in tokens]

    for index in range(unit_index - 1):
        if lowered[index] in ORDINAL_WORDS and lowered[index + 1] in STREET_SUFFIXES:
            out[index] = ORDINAL_WORDS[lowered[index]]

    if unit_index >= 1:
        last = unit_index - 1
        if last >= 1 and lowered[last] in DIRECTIONALS and lowered[last - 1] in STREET_SUFFIXES:
            out[last] = DIRECTIONALS[lowered[last]]
            last -= 1
        if last >= 1 and lowered[last] in STREET_SUFFIXES:
            out[last] = STREET_SUFFIXES[lowered[last]]
    if unit_index > 2 and lowered[0][:1].isdigit() and lowered[1] in DIRECTIONALS:
        out[1] = DIRECTIONALS[lowered[1]]

    if unit_index < len(tokens) and lowered[unit_index] in UNIT_DESIGNATORS:
        out[unit_index] = UNIT_DESIGNATORS[lowered[unit_index]]

    return " ".join(out)


def normalize_state(value: str) -> str:
    v = collapse_whitespace(value).rstrip(".")
    if not v:
        return ""
    if len(v) == 2 and v.isalpha():
        return v.upper()
    return STATE_ABBR.get(v.lower(), v.upper())


def normalize_zip(value: Optional[str]) -> str:
    digits = re.sub(r"\D", "", value or "")[:5]
    if 3 <= len(digits) < 5:
        digits = digits.zfill(5)
    return digits


def phone_digits(value: Optional[str]) -> str:
    digits = re.sub(r"\D", "", value or "")
    if len(digits) == 11 and digits.startswith("1"):
        digits = digits[1:]
    return digits


def is_well_formed_phone(value: Optional[str]) -> bool:
    return len(phone_digits(value)) == 10


def format_phone(value: Optional[str]) -> str:
    digits = phone_digits(value)
    if len(digits) != 10:
        return digits
    try:
        parsed = phonenumbers.parse(digits, "US")
    except phonenumbers.NumberParseException:
        return digits
    return phonenumbers.format_number(parsed, phonenumbers.PhoneNumberFormat.NATIONAL)


def is_plausible_phone(value: Optional[str], region: str = "US") -> bool:
    digits = phone_digits(value)
    if not digits:
        return False
    try:
        parsed = phonenumbers.parse(digits, region)
    except phonenumbers.NumberParseException:
        return False
    return phonenumbers.is_possible_number(parsed) and phonenumbers.is_valid_number(parsed)


def normalize_email(raw: Optional[str]) -> str:
    candidate = collapse_whitespace(raw).replace(" ", "")
    if not candidate:
        return ""
    try:
        return validate_email(candidate, check_deliverability=False).normalized
    except EmailNotValidError:
        logger.info("Keeping unvalidated email address: %s", candidate)
        return candidate.lower()


def _field_text(target: Optional[str]) -> str:
    return re.sub(r"[^a-z0-9]+", " ", (target or "").lower()).strip()


def is_phone_qualifier(target: Optional[str]) -> bool:
    text = (target or "").lower()
    return any(token in text for token in PHONE_QUALIFIER_TOKENS)


def is_phone_field(target: Optional[str]) -> bool:
    text = (target or "").lower()
    return "phone" in text and not is_phone_qualifier(text)


def is_zip_field(target: Optional[str]) -> bool:
    text = (target or "").lower()
    return "zip" in text or "postal" in text


def is_name_field(target: Optional[str]) -> bool:
    words = _field_text(target).split()
    if any(word in {"name", "title"} for word in words):
        return True
    compact = "".join(words)
    return compact.endswith("name") and "email" not in compact


def normalize_association(label: Optional[str]) -> str:
    return collapse_whitespace(label).lower()


def association_root(label: Optional[str]) -> str:
    """Strip trailing slot numbers so "Owner 1" and "Owner #2" compare as "owner"."""
    return re.sub(r"[\s#_-]*\d+$", "", normalize_association(label)).strip()


def association_matches(label: Optional[str], tokens: Iterable[str]) -> bool:
    root = association_root(label)
    if not root:
        return False
    return any(root == association_root(token) for token in tokens)


def is_mailing_association(label: Optional[str], mailing_label: str = "Mailing Address") -> bool:
    normalized = normalize_association(label)
    if not normalized:
        return False
    return "mailing" in normalized or normalized == normalize_association(mailing_label)


def union_labels(*labels: Optional[str]) -> str:
    seen: Dict[str, str] = {}
    for label in labels:
        for part in (label or "").split(";"):
            part = collapse_whitespace(part)
            if part and part.lower() not in seen:
                seen[part.lower()] = part
    return ";".join(seen.values())


def _core_parts(snapshot: Any) -> List[str]:
    return [
        normalize_text_key(standardize_address(getattr(snapshot, "address", ""))),
        normalize_text_key(getattr(snapshot, "city", "")),
        normalize_state(getattr(snapshot, "state", "")),
        normalize_zip(getattr(snapshot, "zip", "")),
    ]


def core_address_matches(left: Any, right: Any) -> bool:
    """Compare address/city/state/zip; a blank field on either side matches anything."""
    if left is None or right is None:
        return False
    if not any(_core_parts(left)) or not any(_core_parts(right)):
        return False
    for mine, theirs in zip(_core_parts(left), _core_parts(right)):
        if mine and theirs and mine != theirs:
            return False
    return True


def _coerce_to_string(value: Any) -> str:
    if value is None:
        return ""
    try:
        if pd.isna(value):
            return ""
    except (TypeError, ValueError):
        pass
    return str(value).strip()


def safe_get(row: Any, key: str) -> str:
    try:
        return _coerce_to_string(row.get(key, ""))
    except (AttributeError, KeyError, TypeError):
        try:
            if hasattr(row, "__contains__") and key in row:
                return _coerce_to_string(row[key])
            return ""
        except (KeyError, TypeError, AttributeError):
            return ""


def warn_missing(path: Optional[str], label: str) -> bool:
    if not path or not os.path.exists(path):
        logger.warning("%s path missing: %s", label, path)
        return True
    return False
