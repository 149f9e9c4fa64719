from __future__ import annotations

import queue
from email.message import EmailMessage
from typing import Any, Callable, Dict, List, Optional, Sequence, Set, Tuple

from imap_to_filesystem.errors import FetchError, FlagFailure, MoveFailure, SearchError
from imap_to_filesystem.imap.events import BoxOpened, ConnectionEvent, Ended, Ready
from imap_to_filesystem.rules.core import FilterRule
from imap_to_filesystem.rules.criteria import PROCESSED_KEYWORD

NAIVE_DATE = "Tue, 05 Mar 2024 10:00:00 -0000"


def make_raw_message(
    *,
    attachments: Sequence[Tuple[Optional[str], bytes]] = (),
    date: Optional[str] = NAIVE_DATE,
    subject: str = "Your invoice",
) -> bytes:
    msg = EmailMessage()
    msg["From"] = "Billing <billing@example.test>"
    msg["To"] = "me@example.test"
    msg["Subject"] = subject
    if date:
        msg["Date"] = date
    msg.set_content("See attached.")
    for filename, content in attachments:
        if filename is None:
            msg.add_attachment(content, maintype="application", subtype="pdf")
        else:
            msg.add_attachment(content, maintype="application", subtype="pdf", filename=filename)
    return msg.as_bytes()


def make_rule(tmp_path: Any = ".", **overrides: Any) -> FilterRule:
    values: Dict[str, Any] = {
        "name": "invoices",
        "criteria": (("FROM", "billing@example.test"),),
        "destination_path": str(tmp_path),
        "rename_template": "",
    }
    values.update(overrides)
    return FilterRule(**values)


class FakeMailbox:
    """
    In-memory stand-in for MailboxConnection.

    start() emits Ready and BoxOpened. Every resume() runs the next step
    from `steps` (which may add messages and push events); when no step is
    left the connection ends.
    """

    def __init__(self, mailbox: str = "INBOX", messages: Optional[Dict[int, bytes]] = None) -> None:
        self.mailbox = mailbox
        self.messages: Dict[int, bytes] = dict(messages or {})
        self.keywords: Dict[int, Set[str]] = {uid: set() for uid in self.messages}
        self.moved: Dict[int, str] = {}
        self.calls: List[Tuple[Any, ...]] = []
        self.steps: List[Callable[["FakeMailbox"], None]] = []
        self.events: Optional["queue.Queue[ConnectionEvent]"] = None
        self.fail_search_for: Set[str] = set()
        self.fail_fetch = False
        self.fetch_error: Optional[BaseException] = None
        self.fail_flag = False
        self.fail_move = False
        self.resumes = 0
        self.stopped = False
        self.opened = 0
        self.closed = 0

    # --- test setup ---

    def add_message(self, uid: int, raw: bytes) -> None:
        self.messages[uid] = raw
        self.keywords[uid] = set()

    def push(self, event: ConnectionEvent) -> None:
        assert self.events is not None
        self.events.put(event)

    def factory(self, mailbox: str, events: "queue.Queue[ConnectionEvent]") -> "FakeMailbox":
        assert mailbox == self.mailbox
        self.events = events
        return self

    # --- lifecycle ---

    def start(self) -> None:
        self.push(Ready())
        self.push(BoxOpened(self.mailbox, len(self.messages)))

    def resume(self) -> None:
        self.resumes += 1
        if self.steps:
            self.steps.pop(0)(self)
        else:
            self.push(Ended())

    def stop(self) -> None:
        self.stopped = True

    def open(self) -> int:
        self.opened += 1
        return len(self.messages)

    def close(self) -> None:
        self.closed += 1

    # --- mailbox operations ---

    def search(self, criteria: Sequence[Any], *, filter_name: str = "") -> List[int]:
        self.calls.append(("search", filter_name, list(criteria)))
        if filter_name in self.fail_search_for:
            raise SearchError(filter_name, None, "NO search failed")
        present = [uid for uid in sorted(self.messages) if uid not in self.moved]
        if list(criteria[:2]) == ["KEYWORD", PROCESSED_KEYWORD]:
            return [uid for uid in present if PROCESSED_KEYWORD in self.keywords[uid]]
        return [uid for uid in present if PROCESSED_KEYWORD not in self.keywords[uid]]

    def fetch_raw(self, uid: int, *, filter_name: str = "") -> bytes:
        self.calls.append(("fetch", uid))
        if self.fail_fetch:
            raise FetchError(filter_name, uid, "NO fetch failed")
        if self.fetch_error is not None:
            raise self.fetch_error
        return self.messages[uid]

    def add_keyword(self, uid: int, keyword: str, *, filter_name: str = "") -> None:
        self.calls.append(("flag", uid, keyword))
        if self.fail_flag:
            raise FlagFailure(filter_name, uid, "NO store failed")
        self.keywords[uid].add(keyword)

    def move(self, uid: int, destination: str, *, filter_name: str = "") -> None:
        self.calls.append(("move", uid, destination))
        if self.fail_move:
            raise MoveFailure(filter_name, uid, "NO move failed")
        self.moved[uid] = destination

    def count(self, kind: str) -> int:
        return sum(1 for call in self.calls if call[0] == kind)
