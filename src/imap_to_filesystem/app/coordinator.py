from __future__ import annotations

import logging
import queue
import threading
from typing import Iterable, List, Optional, Tuple

from imap_to_filesystem.app.session import ConnectionFactory, MailboxSession
from imap_to_filesystem.errors import SessionConnectionError
from imap_to_filesystem.imap.client import ImapConfig, MailboxConnection
from imap_to_filesystem.imap.events import ConnectionEvent
from imap_to_filesystem.models import SweepReport
from imap_to_filesystem.rules.core import FilterRule, derive_mailboxes


class WatchCoordinator:
    """
    Runs one MailboxSession per watched mailbox, each on its own thread.

    run() waits for all of them. The first session that fails makes run()
    raise; the other sessions are left running, call stop() to end them.
    """

    def __init__(
        self,
        imap_config: ImapConfig,
        rules: Iterable[FilterRule],
        *,
        connection_factory: Optional[ConnectionFactory] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._imap_config = imap_config
        self._rules = tuple(rules)
        self._logger = logger or logging.getLogger("imap_to_filesystem")
        self._connection_factory = connection_factory or self._connect
        self._done: "queue.Queue[Tuple[MailboxSession, Optional[BaseException]]]" = queue.Queue()
        self._threads: List[threading.Thread] = []
        self.sessions: List[MailboxSession] = []

    @property
    def mailboxes(self) -> List[str]:
        return derive_mailboxes(self._rules)

    def _connect(self, mailbox: str, events: "queue.Queue[ConnectionEvent]") -> MailboxConnection:
        return MailboxConnection(self._imap_config, mailbox, events, logger=self._logger.getChild("imap"))

    def _create_sessions(self) -> List[MailboxSession]:
        self.sessions = [
            MailboxSession(
                mailbox,
                self._rules,
                self._connection_factory,
                logger=self._logger.getChild("session"),
            )
            for mailbox in self.mailboxes
        ]
        return self.sessions

    def run(self) -> None:
        sessions = self._create_sessions()
        self._logger.info("Watching mailboxes: %s", ", ".join(s.mailbox for s in sessions))

        for session in sessions:
            thread = threading.Thread(
                target=self._supervise,
                args=(session,),
                name=f"session-{session.mailbox}",
                daemon=True,
            )
            self._threads.append(thread)
            thread.start()

        pending = len(sessions)
        while pending:
            session, error = self._done.get()
            pending -= 1
            if error is not None:
                self._logger.error("Session for %s stopped with error: %s", session.mailbox, error)
                raise error
            self._logger.debug("Session for %s ended", session.mailbox)

        self._logger.info("All mailbox sessions ended")

    def _supervise(self, session: MailboxSession) -> None:
        try:
            session.run()
        except Exception as exc:
            self._done.put((session, exc))
        else:
            self._done.put((session, None))

    def stop(self) -> None:
        for session in self.sessions:
            session.stop()

    def join(self, timeout: Optional[float] = None) -> None:
        for thread in self._threads:
            thread.join(timeout)

    def sweep_once(self) -> List[SweepReport]:
        """Sweep every mailbox once, one after the other, without IDLE."""
        reports: List[SweepReport] = []
        first_error: Optional[SessionConnectionError] = None
        for session in self._create_sessions():
            try:
                reports.append(session.sweep_once())
            except SessionConnectionError as exc:
                first_error = first_error or exc
        if first_error is not None:
            raise first_error
        return reports
