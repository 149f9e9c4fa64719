from __future__ import annotations

from datetime import date, datetime
from typing import Any, List, Sequence

from imap_to_filesystem.errors import ConfigError
from imap_to_filesystem.rules.core import FilterRule, SearchTerm

# Keyword flag set on every message whose attachment was saved.
PROCESSED_KEYWORD = "AttachmentSaved"

_DATE_KEYWORDS = {"BEFORE", "ON", "SINCE", "SENTBEFORE", "SENTON", "SENTSINCE"}
_DATE_FORMATS = ("%Y-%m-%d", "%d-%b-%Y", "%B %d, %Y", "%b %d, %Y")


def _split_keyword(raw: Any) -> tuple[str, bool]:
    if not isinstance(raw, str) or not raw.strip():
        raise ConfigError(f"Invalid search keyword: {raw!r}")
    keyword = raw.strip().upper()
    if keyword.startswith("!"):
        return keyword[1:], True
    return keyword, False


def _date_argument(value: Any) -> Any:
    if isinstance(value, (date, datetime)) or not isinstance(value, str):
        return value
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(value.strip(), fmt).date()
        except ValueError:
            continue
    return value


def normalize_term(term: SearchTerm) -> List[Any]:
    """
    Translate one configured search term into imapclient criteria items.

    "!KEYWORD" negates, ("OR", a, b) groups both operands, date arguments
    are converted so imapclient renders them as IMAP dates.
    """
    if isinstance(term, str):
        keyword, negate = _split_keyword(term)
        items: List[Any] = [keyword]
    elif isinstance(term, (list, tuple)) and term:
        keyword, negate = _split_keyword(term[0])
        args = list(term[1:])
        if keyword == "OR":
            if len(args) != 2:
                raise ConfigError(f"OR expects exactly two operands, got {len(args)}")
            items = ["OR", normalize_term(args[0]), normalize_term(args[1])]
        elif keyword in _DATE_KEYWORDS:
            items = [keyword] + [_date_argument(a) for a in args]
        else:
            items = [keyword] + args
    else:
        raise ConfigError(f"Invalid search term: {term!r}")

    if negate:
        return ["NOT"] + items
    return items


def normalize_criteria(criteria: Sequence[SearchTerm]) -> List[Any]:
    out: List[Any] = []
    for term in criteria:
        out.extend(normalize_term(term))
    return out


def unprocessed_criteria(rule: FilterRule) -> List[Any]:
    """Search criteria for messages matching `rule` that were not handled yet."""
    return ["NOT", "KEYWORD", PROCESSED_KEYWORD] + normalize_criteria(rule.criteria)


def processed_criteria() -> List[Any]:
    return ["KEYWORD", PROCESSED_KEYWORD]
