from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple, Union

DEFAULT_MAILBOX = "INBOX"

# A search term is a bare keyword ("UNSEEN") or a keyword plus arguments
# (("FROM", "billing@example.com")); arguments of OR are terms themselves.
SearchTerm = Union[str, Tuple["SearchTerm", ...]]


@dataclass(frozen=True)
class FilterRule:
    name: str
    criteria: Tuple[SearchTerm, ...]
    destination_path: str
    rename_template: str = ""
    watched_mailbox: Optional[str] = None
    done_mailbox: Optional[str] = None
    filename_filter: Optional[str] = None
    disabled: bool = False

    @property
    def mailbox(self) -> str:
        return self.watched_mailbox or DEFAULT_MAILBOX

    def matches(self, mailbox_name: str) -> bool:
        """True if this rule is enabled and watches `mailbox_name`."""
        if self.disabled:
            return False
        if self.watched_mailbox:
            return self.watched_mailbox == mailbox_name
        return mailbox_name == DEFAULT_MAILBOX

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(name={self.name!r}, mailbox={self.mailbox!r})"


def freeze_criteria(raw: Iterable[object]) -> Tuple[SearchTerm, ...]:
    """Turn nested lists (as loaded from JSON) into nested tuples."""

    def freeze(term: object) -> SearchTerm:
        if isinstance(term, (list, tuple)):
            return tuple(freeze(t) for t in term)
        return term  # type: ignore[return-value]

    return tuple(freeze(t) for t in raw)


def rules_for_mailbox(rules: Iterable[FilterRule], mailbox_name: str) -> List[FilterRule]:
    return [rule for rule in rules if rule.matches(mailbox_name)]


def derive_mailboxes(rules: Iterable[FilterRule]) -> List[str]:
    """
    Distinct mailbox names watched by the enabled rules, in first-seen order.
    Falls back to INBOX when no rule is enabled.
    """
    mailboxes: List[str] = []
    for rule in rules:
        if rule.disabled:
            continue
        if rule.mailbox not in mailboxes:
            mailboxes.append(rule.mailbox)
    return mailboxes or [DEFAULT_MAILBOX]
