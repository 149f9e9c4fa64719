from __future__ import annotations

import queue
from pathlib import Path
from typing import Dict

import pytest

from imap_to_filesystem.app.coordinator import WatchCoordinator
from imap_to_filesystem.errors import SessionConnectionError
from imap_to_filesystem.imap.client import ImapConfig
from imap_to_filesystem.imap.events import ConnectionEvent, ConnectionFailed
from tests.helpers import FakeMailbox, make_raw_message, make_rule

IMAP = ImapConfig(host="imap.example.test", user="me", password="secret")


def _factory(mailboxes: Dict[str, FakeMailbox]):
    def connect(mailbox: str, events: "queue.Queue[ConnectionEvent]") -> FakeMailbox:
        return mailboxes[mailbox].factory(mailbox, events)

    return connect


def test_coordinator_watches_one_session_per_mailbox(tmp_path: Path) -> None:
    rules = [
        make_rule(tmp_path / "invoices", name="invoices", watched_mailbox="Invoices"),
        make_rule(tmp_path / "inbox", name="inbox"),
        make_rule(tmp_path / "off", name="off", watched_mailbox="X", disabled=True),
    ]
    mailboxes = {
        "Invoices": FakeMailbox("Invoices", {1: make_raw_message(attachments=[("i.pdf", b"i")])}),
        "INBOX": FakeMailbox("INBOX", {1: make_raw_message(attachments=[("n.pdf", b"n")])}),
    }
    coordinator = WatchCoordinator(IMAP, rules, connection_factory=_factory(mailboxes))

    coordinator.run()

    assert coordinator.mailboxes == ["Invoices", "INBOX"]
    assert sorted(s.mailbox for s in coordinator.sessions) == ["INBOX", "Invoices"]
    assert (tmp_path / "invoices" / "i.pdf").exists()
    assert (tmp_path / "inbox" / "n.pdf").exists()


def test_coordinator_raises_when_a_session_fails(tmp_path: Path) -> None:
    rules = [make_rule(tmp_path, name="a", watched_mailbox="A")]
    failing = FakeMailbox("A")
    failing.steps.append(lambda fake: fake.push(ConnectionFailed(OSError("gone"))))
    coordinator = WatchCoordinator(IMAP, rules, connection_factory=_factory({"A": failing}))

    with pytest.raises(SessionConnectionError):
        coordinator.run()


def test_stop_reaches_every_session(tmp_path: Path) -> None:
    rules = [make_rule(tmp_path, name="a", watched_mailbox="A"), make_rule(tmp_path, name="b", watched_mailbox="B")]
    mailboxes = {"A": FakeMailbox("A"), "B": FakeMailbox("B")}
    coordinator = WatchCoordinator(IMAP, rules, connection_factory=_factory(mailboxes))
    coordinator.run()

    coordinator.stop()
    coordinator.join(timeout=1)

    assert all(m.stopped for m in mailboxes.values())


def test_sweep_once_returns_one_report_per_mailbox(tmp_path: Path) -> None:
    rules = [make_rule(tmp_path, name="a", watched_mailbox="A"), make_rule(tmp_path, name="b")]
    mailboxes = {
        "A": FakeMailbox("A", {3: make_raw_message(attachments=[("a.pdf", b"a")])}),
        "INBOX": FakeMailbox("INBOX"),
    }
    coordinator = WatchCoordinator(IMAP, rules, connection_factory=_factory(mailboxes))

    reports = coordinator.sweep_once()

    assert [(r.mailbox, r.files_saved) for r in reports] == [("A", 1), ("INBOX", 0)]
    assert all(m.closed == 1 for m in mailboxes.values())
