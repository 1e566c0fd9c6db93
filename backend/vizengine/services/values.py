"""
Total coercion functions over the scalar cell union.

Every profiling and classification decision goes through these
parse-or-None helpers instead of relying on implicit conversion.
"""
import math
import re
from collections import Counter
from typing import Iterable, List, Optional

import pandas as pd

from vizengine.core.schemas import Scalar

# Currency, percent and thousands separators are stripped before numeric parsing
CURRENCY_PATTERN = re.compile(r'[$€£¥%,]')

_MONTHS = r'(jan|feb|mar|apr|may|jun|jul|aug|sep|sept|oct|nov|dec)[a-z]*\.?'

# Literal date shapes: ISO, year-first slash, US, EU, written-month forms
DATE_PATTERNS = [
    re.compile(r'^\d{4}-\d{1,2}-\d{1,2}([ t]\d{1,2}:\d{2}(:\d{2}(\.\d+)?)?)?(z|[+-]\d{2}:?\d{2})?$', re.I),
    re.compile(r'^\d{4}/\d{1,2}/\d{1,2}$'),
    re.compile(r'^\d{1,2}/\d{1,2}/(\d{4}|\d{2})$'),
    re.compile(r'^\d{1,2}[.-]\d{1,2}[.-]\d{4}$'),
    re.compile(rf'^\d{{1,2}}(st|nd|rd|th)?\s+{_MONTHS},?\s+\d{{4}}$', re.I),
    re.compile(rf'^{_MONTHS}\s+\d{{1,2}}(st|nd|rd|th)?,?\s+\d{{4}}$', re.I),
    re.compile(rf'^{_MONTHS}\s+\d{{4}}$', re.I),
]

MIN_YEAR = 1900
MAX_YEAR = 2100
LONG_TEXT_LENGTH = 100

_DIGITS = re.compile(r'^[+-]?\d+$')
_CAMEL_BOUNDARY = re.compile(r'(?<=[a-z0-9])(?=[A-Z])')
_TOKEN_SPLIT = re.compile(r'[^a-z0-9]+')
_ALPHA_RUN = re.compile(r'[a-z]+')

# Alphabetic runs allowed inside a parseable date; anything else skips the parser
DATE_WORDS = frozenset({
    'jan', 'january', 'feb', 'february', 'mar', 'march', 'apr', 'april',
    'may', 'jun', 'june', 'jul', 'july', 'aug', 'august', 'sep', 'sept',
    'september', 'oct', 'october', 'nov', 'november', 'dec', 'december',
    'mon', 'monday', 'tue', 'tues', 'tuesday', 'wed', 'wednesday', 'thu',
    'thur', 'thurs', 'thursday', 'fri', 'friday', 'sat', 'saturday', 'sun', 'sunday',
    'am', 'pm', 'st', 'nd', 'rd', 'th', 'of', 't', 'z', 'utc', 'gmt',
})


def is_missing(value: Scalar) -> bool:
    """None, empty string and float NaN count as missing."""
    if value is None:
        return True
    if isinstance(value, str):
        return value == ""
    if isinstance(value, float):
        return math.isnan(value)
    return False


def non_missing(values: Iterable[Scalar]) -> List[Scalar]:
    return [v for v in values if not is_missing(v)]


def to_number(value: Scalar) -> Optional[float]:
    """Parse a cell as a finite float, or return None. Booleans are not numbers."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        text = CURRENCY_PATTERN.sub('', value).strip()
        if not text:
            return None
        try:
            number = float(text)
        except ValueError:
            return None
    else:
        return None
    return number if math.isfinite(number) else None


def matches_date_pattern(text: str) -> bool:
    text = text.strip()
    return any(pattern.match(text) for pattern in DATE_PATTERNS)


def to_date(value: Scalar) -> Optional[pd.Timestamp]:
    """
    Parse a cell as a date, or return None.

    Only strings are considered: numbers would otherwise be read as epoch
    offsets. Numeric strings and strings without any digit ('may', 'march')
    are rejected for the same reason, as are strings carrying words other
    than month, weekday or time markers ('SKU-12-A3'). A value parsed by
    pandas is accepted when its year falls within MIN_YEAR..MAX_YEAR;
    is_strict_date further requires one of DATE_PATTERNS.
    """
    if not isinstance(value, str):
        return None
    text = value.strip()
    if not text or len(text) > 64 or _DIGITS.match(text):
        return None
    if not any(ch.isdigit() for ch in text) or to_number(text) is not None:
        return None
    if not _only_date_words(text):
        return None

    dayfirst = bool(re.match(r'^\d{1,2}[.-]\d{1,2}[.-]\d{4}$', text))
    try:
        parsed = pd.to_datetime(text, errors='coerce', dayfirst=dayfirst)
    except (ValueError, TypeError, OverflowError):
        parsed = pd.NaT

    if pd.isna(parsed):
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.tz_convert(None)
    if not MIN_YEAR <= parsed.year <= MAX_YEAR:
        return None
    return parsed


def _only_date_words(text: str) -> bool:
    return all(word in DATE_WORDS for word in _ALPHA_RUN.findall(text.lower()))


def is_date_like(value: Scalar) -> bool:
    return to_date(value) is not None


def is_strict_date(value: Scalar) -> bool:
    """Date that also has one of the literal date shapes."""
    return isinstance(value, str) and matches_date_pattern(value) and to_date(value) is not None


def value_shape(value: Scalar) -> str:
    """Classify a non-missing cell as integer, decimal, date, long_text or text."""
    if isinstance(value, bool):
        return "text"
    number = to_number(value)
    if number is not None:
        return "integer" if float(number).is_integer() and not _looks_decimal(value) else "decimal"
    if is_date_like(value):
        return "date"
    if len(str(value)) > LONG_TEXT_LENGTH:
        return "long_text"
    return "text"


def _looks_decimal(value: Scalar) -> bool:
    if isinstance(value, float):
        return True
    return isinstance(value, str) and '.' in value


def dominant_shape(values: Iterable[Scalar]) -> Optional[str]:
    """Most frequent value shape, ties broken by first occurrence."""
    counts = {}
    distinct = Counter((type(v), v) for v in non_missing(values))
    for (_, value), occurrences in distinct.items():
        shape = value_shape(value)
        counts[shape] = counts.get(shape, 0) + occurrences
    if not counts:
        return None
    return max(counts, key=counts.get)


def name_tokens(name: str) -> List[str]:
    """Lowercase tokens of a column name: 'orderDate_UTC' -> ['order', 'date', 'utc']."""
    spaced = _CAMEL_BOUNDARY.sub(' ', name or '')
    return [token for token in _TOKEN_SPLIT.split(spaced.lower()) if token]


def normalize_name(name: str) -> str:
    """Canonical form used for learned name patterns: tokens joined with '_'."""
    return "_".join(name_tokens(name))


def name_matches_pattern(column_name: str, pattern: str) -> bool:
    """True when the normalized pattern appears on token boundaries of the name."""
    normalized = normalize_name(column_name)
    if not pattern or not normalized:
        return False
    return re.search(rf'(^|_){re.escape(pattern)}($|_)', normalized) is not None


def unique_strings(values: Iterable[Scalar]) -> List[str]:
    """Distinct string-cast values in first-seen order."""
    seen = {}
    for value in values:
        seen.setdefault(str(value), None)
    return list(seen)
