from __future__ import annotations

import re
from datetime import datetime
from typing import Optional

UNKNOWN_NAME = "unknown"

_YEAR = re.compile(r"%YEAR%", re.IGNORECASE)
_MONTH = re.compile(r"%MONTH%", re.IGNORECASE)
_DAY = re.compile(r"%DAY%", re.IGNORECASE)
_NAME = re.compile(r"%NAME%", re.IGNORECASE)


def _local(value: Optional[datetime]) -> datetime:
    if value is None:
        return datetime.now()
    if value.tzinfo is not None:
        # Date parts follow the local clock, like the sent date shown to a user.
        return value.astimezone()
    return value


def compute_filename(template: str, message_date: Optional[datetime], original_name: Optional[str]) -> str:
    """
    Output filename for one attachment.

    Without a '%' in the template the original name is kept. Otherwise
    %YEAR%, %MONTH%, %DAY% and %NAME% are substituted (case-insensitive);
    any other %...% token is left as is.
    """
    name = original_name or UNKNOWN_NAME
    if not template or "%" not in template:
        return name

    when = _local(message_date)
    # Callables keep backslashes in names from being read as group references.
    result = _YEAR.sub(lambda _m: f"{when.year:04d}", template)
    result = _MONTH.sub(lambda _m: f"{when.month:02d}", result)
    result = _DAY.sub(lambda _m: f"{when.day:02d}", result)
    return _NAME.sub(lambda _m: name, result)
