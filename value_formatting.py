"""
Normalizes raw Plex attribute values into export-ready text.

- Decodes the HTML/XML character references Plex leaves in titles and summaries.
- Escapes double-quotes for CSV fields (the caller wraps the field in quotes).
- Converts milliseconds, ratings, byte-counts, and epoch-timestamps into display strings.

Every converter returns an empty string for empty or unparseable input; none of them raise.
"""

import logging
import re
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

import humanize

log = logging.getLogger(__name__)


## entity table -----------------------------------------------------
ENTITY_MAP: dict[str, str] = {
    '&amp;': '&',
    '&#39;': "'",
    '&quot;': '"',
    '&lt;': '<',
    '&gt;': '>',
    '&#8216;': "'",
    '&#8217;': "'",
    '&#8220;': '"',
    '&#8221;': '"',
    '&#8230;': '...',
    '&ndash;': '-',
    '&mdash;': '--',
    '&nbsp;': ' ',
    '&rsquo;': "'",
    '&lsquo;': "'",
    '&rdquo;': '"',
    '&ldquo;': '"',
    '&#8211;': '-',
    '&#8212;': '--',
    '&#x27;': "'",
    '&#179;': '³',
    '&#189;': '½',
}
ENTITY_PATTERN: re.Pattern[str] = re.compile('|'.join(re.escape(key) for key in ENTITY_MAP))

DEFAULT_DATE_FORMAT: str = '%Y-%m-%d %H:%M:%S'


def decode_entities(text: str) -> str:
    """
    Replaces known character references with their literal text.

    Runs until nothing in the table matches, so `&amp;quot;` ends up as `"` and
      decoding already-decoded text changes nothing.
    Unknown references (like `&copy;`) are left alone.
    """
    if not text:
        return ''
    decoded: str = text
    while True:
        replaced: str = ENTITY_PATTERN.sub(lambda match: ENTITY_MAP[match.group(0)], decoded)
        if replaced == decoded:
            return replaced
        decoded = replaced


def escape_csv_field(text: str) -> str:
    """
    Doubles embedded double-quotes; everything else, including commas and newlines, is untouched.
    """
    if not text:
        return ''
    return text.replace('"', '""')


def _to_int(value: str | int | None) -> int | None:
    """
    Parses an integer-ish attribute value; returns None for anything unusable.
    """
    if value is None:
        return None
    if isinstance(value, int):
        return value
    stripped: str = value.strip()
    if not stripped:
        return None
    try:
        return int(stripped)
    except ValueError:
        try:
            return int(float(stripped))
        except (OverflowError, ValueError):
            log.debug(f'not an integer, ``{value!r}``')
            return None


## durations --------------------------------------------------------
def format_minutes(duration_ms: str | int | None) -> str:
    """
    Milliseconds to whole minutes (truncating), eg 7265000 -> '121'.
    """
    ms: int | None = _to_int(duration_ms)
    if ms is None:
        return ''
    return str(ms // 60000)


def format_hours_minutes(duration_ms: str | int | None) -> str:
    """
    Milliseconds to '2h 1m', or just '45m' when under an hour.
    """
    ms: int | None = _to_int(duration_ms)
    if ms is None:
        return ''
    total_minutes: int = ms // 60000
    hours, minutes = divmod(total_minutes, 60)
    if hours == 0:
        return f'{minutes}m'
    return f'{hours}h {minutes}m'


def format_track_duration(duration_ms: str | int | None) -> str:
    """
    Milliseconds to 'M:SS', eg 7265000 -> '121:05'.
    """
    ms: int | None = _to_int(duration_ms)
    if ms is None:
        return ''
    minutes: int = ms // 60000
    seconds: int = (ms % 60000) // 1000
    return f'{minutes}:{seconds:02d}'


## ratings, sizes, timestamps ---------------------------------------
def format_rating(score: str | float | None) -> str:
    """
    Plex 0-10 score to a percentage, eg '8.5' -> '85%'. Missing score -> ''.
    Halves round up ('7.25' -> '73%'), not to even.
    """
    if score is None:
        return ''
    raw: str = str(score).strip()
    if not raw:
        return ''
    try:
        value: Decimal = Decimal(raw)
        percent: Decimal = (value * 10).quantize(Decimal('1'), rounding=ROUND_HALF_UP)
    except InvalidOperation:
        log.debug(f'unusable rating, ``{score!r}``')
        return ''
    if not percent.is_finite():
        return ''
    return f'{percent}%'


def format_size(size_bytes: str | int | None) -> str:
    """
    Byte-count to a binary-unit string like '1.5GiB'.
    """
    size: int | None = _to_int(size_bytes)
    if size is None:
        return ''
    try:
        return humanize.naturalsize(size, binary=True).replace(' ', '')
    except OverflowError:
        log.debug(f'unusable size, ``{size_bytes!r}``')
        return ''


def format_timestamp(epoch: str | int | None, date_format: str = DEFAULT_DATE_FORMAT) -> str:
    """
    Epoch seconds to a local date-time string; bad or missing input -> ''.
    """
    seconds: int | None = _to_int(epoch)
    if seconds is None:
        return ''
    try:
        return datetime.fromtimestamp(seconds).strftime(date_format)
    except (OverflowError, OSError, ValueError):
        log.debug(f'unusable timestamp, ``{epoch!r}``')
        return ''


def format_integer(value: str | int | None) -> str:
    """
    Bare integer columns (year, track number...); anything non-numeric -> ''.
    """
    number: int | None = _to_int(value)
    if number is None:
        return ''
    return str(number)


def format_count(value: str | int | None) -> str:
    """
    Episode/season counts; these are the only fields that default to '0'.
    """
    count: int | None = _to_int(value)
    if count is None:
        return '0'
    return str(count)
