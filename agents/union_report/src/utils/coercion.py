"""
Type coercion table for the Row Normalizer.

Each union column type has one coercion function. Structured SharePoint
payloads (lookup, person, taxonomy, url) arrive with inconsistent key casing,
so each has an extraction function that probes a fixed list of spellings and
returns a typed value model.

Parse failures raise CoercionError; callers decide how to degrade.
"""

import math
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

import pandas as pd

from ..models.schemas import (
    ColumnType,
    LookupValue,
    PersonValue,
    TaxonomyValue,
    UrlValue,
)


class CoercionError(ValueError):
    """Raised when a raw value cannot be coerced into its target type."""

    def __init__(self, value: Any, target_type: ColumnType, reason: str):
        super().__init__(f"Cannot coerce {value!r} to {target_type.value}: {reason}")
        self.value = value
        self.target_type = target_type
        self.reason = reason


TRUE_STRINGS = frozenset({"true", "yes", "1"})

# Known key spellings, most common first
ID_KEYS = ("id", "Id", "ID", "lookupId", "LookupId")
LOOKUP_TITLE_KEYS = ("title", "Title", "lookupValue", "LookupValue")
PERSON_NAME_KEYS = ("displayName", "DisplayName", "title", "Title", "lookupValue", "LookupValue")
PERSON_EMAIL_KEYS = ("email", "Email", "EMail", "mail")
TAXONOMY_LABEL_KEYS = ("label", "Label")
TAXONOMY_GUID_KEYS = ("termGuid", "TermGuid", "TermGUID")
URL_KEYS = ("url", "Url", "URL")
URL_DESCRIPTION_KEYS = ("description", "Description")


def _first_present(payload: Mapping[str, Any], keys: Sequence[str]) -> Any:
    for key in keys:
        value = payload.get(key)
        if value is not None:
            return value
    return None


def _optional_str(value: Any) -> Optional[str]:
    return None if value is None else str(value)


# ============================================================================
# STRUCTURED VALUE EXTRACTION
# ============================================================================

def extract_lookup(value: Any) -> LookupValue:
    if isinstance(value, Mapping):
        return LookupValue(
            id=_first_present(value, ID_KEYS),
            title=_optional_str(_first_present(value, LOOKUP_TITLE_KEYS)),
        )
    return LookupValue(id=None, title=str(value))


def extract_person(value: Any) -> PersonValue:
    if isinstance(value, Mapping):
        return PersonValue(
            id=_first_present(value, ID_KEYS),
            display_name=_optional_str(_first_present(value, PERSON_NAME_KEYS)),
            email=_optional_str(_first_present(value, PERSON_EMAIL_KEYS)),
        )
    return PersonValue(id=None, display_name=str(value), email=None)


def extract_taxonomy(value: Any) -> TaxonomyValue:
    if isinstance(value, Mapping):
        return TaxonomyValue(
            label=_optional_str(_first_present(value, TAXONOMY_LABEL_KEYS)),
            term_guid=_optional_str(_first_present(value, TAXONOMY_GUID_KEYS)),
        )
    return TaxonomyValue(label=str(value), term_guid=None)


def extract_url(value: Any) -> UrlValue:
    if isinstance(value, Mapping):
        return UrlValue(
            url=_optional_str(_first_present(value, URL_KEYS)),
            description=_optional_str(_first_present(value, URL_DESCRIPTION_KEYS)),
        )
    return UrlValue(url=str(value), description=None)


# ============================================================================
# SCALAR COERCION
# ============================================================================

def coerce_text(value: Any) -> str:
    return str(value)


def coerce_number(value: Any, target_type: ColumnType = ColumnType.NUMBER) -> float:
    """Parse to float. Booleans count as 1/0."""
    if isinstance(value, bool):
        return float(value)
    if isinstance(value, (int, float, Decimal)):
        result = float(value)
    elif isinstance(value, str):
        try:
            result = float(value.strip())
        except ValueError:
            raise CoercionError(value, target_type, "not numeric")
    else:
        raise CoercionError(value, target_type, f"unsupported {type(value).__name__}")

    if not math.isfinite(result):
        raise CoercionError(value, target_type, "not a finite number")
    return result


def _to_iso(ts: pd.Timestamp) -> str:
    return ts.strftime("%Y-%m-%dT%H:%M:%S.") + f"{ts.microsecond // 1000:03d}Z"


def coerce_datetime(value: Any) -> str:
    """
    Parse to a UTC timestamp and emit ISO-8601 with milliseconds.

    Naive inputs are taken as UTC; numbers are epoch milliseconds.
    """
    if isinstance(value, bool) or not isinstance(value, (int, float, Decimal, str, datetime, date)):
        raise CoercionError(value, ColumnType.DATETIME, f"unsupported {type(value).__name__}")

    try:
        if isinstance(value, (int, float, Decimal)):
            ts = pd.to_datetime(float(value), unit="ms", utc=True)
        elif isinstance(value, str):
            ts = pd.to_datetime(value.strip(), utc=True)
        else:
            ts = pd.to_datetime(value, utc=True)
    except (ValueError, TypeError, OverflowError) as e:
        raise CoercionError(value, ColumnType.DATETIME, str(e)) from e

    if pd.isna(ts):
        raise CoercionError(value, ColumnType.DATETIME, "empty timestamp")
    return _to_iso(ts)


def coerce_boolean(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in TRUE_STRINGS
    return bool(value)


def coerce_choice(value: Any) -> List[str]:
    """Scalar -> one-element list. Null entries in a multi-choice array are dropped."""
    if isinstance(value, (list, tuple, set, frozenset)):
        return [str(v) for v in value if v is not None]
    return [str(value)]


_COERCERS: Dict[ColumnType, Callable[[Any], Any]] = {
    ColumnType.TEXT: coerce_text,
    ColumnType.NUMBER: lambda v: coerce_number(v, ColumnType.NUMBER),
    ColumnType.CURRENCY: lambda v: coerce_number(v, ColumnType.CURRENCY),
    ColumnType.DATETIME: coerce_datetime,
    ColumnType.BOOLEAN: coerce_boolean,
    ColumnType.CHOICE: coerce_choice,
    ColumnType.LOOKUP: lambda v: extract_lookup(v).model_dump(by_alias=True),
    ColumnType.PERSON: lambda v: extract_person(v).model_dump(by_alias=True),
    ColumnType.TAXONOMY: lambda v: extract_taxonomy(v).model_dump(by_alias=True),
    ColumnType.URL: lambda v: extract_url(v).model_dump(by_alias=True),
}


def coerce_value(value: Any, target_type: ColumnType) -> Any:
    """
    Coerce a raw value into the shape of the union column's type.

    None stays None for every type. Calculated and unknown types pass
    through unchanged.

    Raises:
        CoercionError: If the value cannot be parsed for the target type
    """
    if value is None:
        return None
    coercer = _COERCERS.get(target_type)
    if coercer is None:
        return value
    return coercer(value)
