"""
Time filtering for object paths.

Objects are expected to live under directories that encode when they were
created, e.g. '/backups/2020/06/01/00/dump.gz' for the format '%Y/%m/%d/%H'.
TimeFormat extracts that time from a path and checks it against a window.
"""

import re
from datetime import datetime, time, timezone
from typing import Optional, List, Tuple

DEFAULT_TIME_FORMAT = "%Y/%m/%d/%H"

_DATE_ONLY = re.compile(r"\d{4}-\d{2}-\d{2}")

# directive -> (field name, digit count)
_DIRECTIVES = {
    "Y": ("year", 4),
    "m": ("month", 2),
    "d": ("day", 2),
    "H": ("hour", 2),
    "M": ("minute", 2),
    "S": ("second", 2),
}


def ensure_utc(when: datetime) -> datetime:
    """Return an aware UTC datetime; naive values are taken to be UTC."""
    if when.tzinfo is None:
        return when.replace(tzinfo=timezone.utc)
    return when.astimezone(timezone.utc)


def parse_time_arg(value: str, end: bool = False) -> datetime:
    """
    Parse a date or datetime given on the command line or in a config file.

    Accepts ISO 8601 forms such as '2020-06-01', '2020-06-01T12:00:00' and
    '2020-06-01T12:00:00Z'. Raises ValueError for anything else. A bare date
    names the start of that day, or its last instant when end is set.
    """
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"invalid time: {value!r}")
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        raise ValueError(f"invalid time: {value!r}") from None
    if end and _DATE_ONLY.fullmatch(text):
        parsed = datetime.combine(parsed.date(), time.max)
    return ensure_utc(parsed)


def parse_end_time_arg(value: str) -> datetime:
    """Parse the end of a time window; a bare date covers the whole day."""
    return parse_time_arg(value, end=True)


class TimeFormat:
    """
    A strftime-style description of where times appear in object paths.

    Supported directives are %Y, %m, %d, %H, %M and %S; everything else is
    matched literally. Paths that only carry a leading part of the format
    (e.g. '/backups/2020/06' for '%Y/%m/%d/%H') resolve to the start of the
    period they name.
    """

    def __init__(self, fmt: str = DEFAULT_TIME_FORMAT):
        self.fmt = fmt
        self._patterns = self._compile(fmt)
        if not self._patterns:
            raise ValueError(f"time format has no time fields: {fmt!r}")

    def __repr__(self) -> str:
        return f"TimeFormat({self.fmt!r})"

    @staticmethod
    def _tokenize(fmt: str) -> List[Tuple[str, str]]:
        tokens = []
        literal = []
        i = 0
        while i < len(fmt):
            char = fmt[i]
            if char == "%" and i + 1 < len(fmt):
                directive = fmt[i + 1]
                if directive in _DIRECTIVES:
                    if literal:
                        tokens.append(("literal", "".join(literal)))
                        literal = []
                    tokens.append(("field", directive))
                    i += 2
                    continue
                if directive == "%":
                    literal.append("%")
                    i += 2
                    continue
                raise ValueError(f"unsupported directive %{directive} in {fmt!r}")
            literal.append(char)
            i += 1
        if literal:
            tokens.append(("literal", "".join(literal)))
        return tokens

    def _compile(self, fmt: str) -> List[Tuple["re.Pattern", List[str]]]:
        """Build one pattern per leading part of the format, longest first."""
        tokens = self._tokenize(fmt)
        patterns = []
        parts = []
        fields = []
        for kind, value in tokens:
            if kind == "literal":
                parts.append(re.escape(value))
                continue

            name, width = _DIRECTIVES[value]
            if name in fields:
                raise ValueError(f"duplicate directive %{value} in {fmt!r}")
            parts.append(r"(\d{%d})" % width)
            fields = fields + [name]
            regex = r"(?<![0-9])" + "".join(parts) + r"(?![0-9])"
            patterns.append((re.compile(regex), fields))

        patterns.reverse()
        return patterns

    def extract_begin_time_for(self, path: str) -> Optional[datetime]:
        """Return the start of the time bucket path lives in, or None."""
        for pattern, fields in self._patterns:
            match = pattern.search(path)
            if match is None:
                continue

            values = {"year": 1970, "month": 1, "day": 1, "hour": 0, "minute": 0, "second": 0}
            for name, group in zip(fields, match.groups()):
                values[name] = int(group)
            if "year" not in fields:
                # a bucket without a year cannot be placed on a calendar
                return None
            try:
                return datetime(tzinfo=timezone.utc, **values)
            except ValueError:
                return None

        return None

    def range_contains(self, start: Optional[datetime], end: Optional[datetime], path: str) -> bool:
        """Check whether path's time falls within [start, end]; either bound may be None."""
        when = self.extract_begin_time_for(path)
        if when is None:
            return False
        if start is not None and when < ensure_utc(start):
            return False
        if end is not None and when > ensure_utc(end):
            return False
        return True
