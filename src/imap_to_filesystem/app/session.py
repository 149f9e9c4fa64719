from __future__ import annotations

import logging
import queue
import threading
from enum import Enum
from typing import Callable, Iterable, List, Optional, Protocol

from imap_to_filesystem.errors import ConfigError, FetchError, MessageError, SearchError, SessionConnectionError
from imap_to_filesystem.imap.client import MailboxHandle
from imap_to_filesystem.imap.events import BoxOpened, ConnectionEvent, ConnectionFailed, Ended, NewMail, Ready
from imap_to_filesystem.models import SweepReport
from imap_to_filesystem.pipeline.processor import MessageProcessor
from imap_to_filesystem.rules.core import FilterRule, rules_for_mailbox
from imap_to_filesystem.rules.criteria import processed_criteria, unprocessed_criteria


class SessionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    BOX_OPENING = "box_opening"
    WATCHING = "watching"
    SWEEPING = "sweeping"
    ENDING = "ending"
    ERRORED = "errored"


class WatchedConnection(MailboxHandle, Protocol):
    def start(self) -> None: ...
    def resume(self) -> None: ...
    def stop(self) -> None: ...
    def open(self) -> int: ...
    def close(self) -> None: ...


ConnectionFactory = Callable[[str, "queue.Queue[ConnectionEvent]"], WatchedConnection]


class MailboxSession:
    """
    Watches one mailbox: sweeps it when the box opens and again on every
    new-mail notification, until the connection ends or fails.

    Events arrive from the connection thread through a queue; the session
    consumes them one at a time, so sweeps of one mailbox never overlap.
    """

    def __init__(
        self,
        mailbox: str,
        rules: Iterable[FilterRule],
        connection_factory: ConnectionFactory,
        *,
        processor: Optional[MessageProcessor] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.mailbox = mailbox
        self._all_rules = tuple(rules)
        self._connection_factory = connection_factory
        self._logger = logger or logging.getLogger("imap_to_filesystem.session")
        self._processor = processor or MessageProcessor(logger=self._logger)
        self._events: "queue.Queue[ConnectionEvent]" = queue.Queue()
        self._connection: Optional[WatchedConnection] = None
        self._stop_requested = threading.Event()

        self.state = SessionState.DISCONNECTED
        self.connected = False
        self.box_opened = False
        self.sweeps = 0
        self.last_report: Optional[SweepReport] = None

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(mailbox={self.mailbox!r}, state={self.state.value})"

    @property
    def rules(self) -> List[FilterRule]:
        return rules_for_mailbox(self._all_rules, self.mailbox)

    # --- Lifecycle ---

    def run(self) -> None:
        """
        Block until the connection ends.

        Returns normally on a clean end; raises SessionConnectionError when
        the connection fails.
        """
        self._logger.debug("Watching mailbox: %s", self.mailbox)
        self._set_state(SessionState.CONNECTING)
        connection = self._connection_factory(self.mailbox, self._events)
        self._connection = connection
        connection.start()
        if self._stop_requested.is_set():
            connection.stop()

        ended = False
        try:
            while not ended:
                ended = self._handle(connection, self._events.get())
        except SessionConnectionError as exc:
            self._logger.error("Mailbox %s failed: %s", self.mailbox, exc)
            raise
        except Exception:
            self._logger.exception("Session for %s crashed", self.mailbox)
            raise
        finally:
            if not ended:
                self._mark_down(SessionState.ERRORED)
                # Release a parked connection thread so it can log out.
                connection.stop()
                connection.resume()

    def stop(self) -> None:
        """Ask the connection to leave IDLE and log out; run() then returns."""
        self._stop_requested.set()
        if self._connection is not None:
            self._connection.stop()

    def sweep_once(self) -> SweepReport:
        """Open the mailbox, sweep it once and log out, without IDLE."""
        self._set_state(SessionState.CONNECTING)
        connection = self._connection_factory(self.mailbox, self._events)
        self._connection = connection
        try:
            connection.open()
            self.connected = True
            self.box_opened = True
            self._set_state(SessionState.BOX_OPENING)
            self._log_processed(connection)
            report = self._sweep(connection)
            self._set_state(SessionState.ENDING)
            return report
        except SessionConnectionError as exc:
            self._logger.error("Mailbox %s failed: %s", self.mailbox, exc)
            self._set_state(SessionState.ERRORED)
            raise
        finally:
            connection.close()
            self.connected = False
            self.box_opened = False

    def _handle(self, connection: WatchedConnection, event: ConnectionEvent) -> bool:
        """Apply one event. True when the session is over."""
        if isinstance(event, Ready):
            self.connected = True
            self._logger.debug("IMAP connection ready for %s", self.mailbox)
            self._set_state(SessionState.BOX_OPENING)
        elif isinstance(event, BoxOpened):
            self.box_opened = True
            self._logger.debug("Box %s opened (%d messages)", event.mailbox, event.exists)
            if not self._stop_requested.is_set():
                self._log_processed(connection)
                self._sweep(connection)
            self._set_state(SessionState.WATCHING)
            connection.resume()
        elif isinstance(event, NewMail):
            self._logger.info("%d new messages in %s, processing filters.", event.count, self.mailbox)
            if not self._stop_requested.is_set():
                self._sweep(connection)
            self._set_state(SessionState.WATCHING)
            connection.resume()
        elif isinstance(event, ConnectionFailed):
            error = event.error
            if isinstance(error, SessionConnectionError):
                raise error
            raise SessionConnectionError(self.mailbox, f"{type(error).__name__}: {error}") from error
        elif isinstance(event, Ended):
            self._logger.debug("Connection for %s ended.", self.mailbox)
            self._mark_down(SessionState.ENDING)
            return True
        return False

    def _set_state(self, state: SessionState) -> None:
        if state != self.state:
            self._logger.debug("%s: %s -> %s", self.mailbox, self.state.value, state.value)
        self.state = state

    def _mark_down(self, state: SessionState) -> None:
        self.connected = False
        self.box_opened = False
        self._set_state(state)

    # --- Sweep ---

    def _log_processed(self, handle: MailboxHandle) -> None:
        try:
            uids = handle.search(processed_criteria(), filter_name="processed")
        except SearchError as exc:
            self._logger.warning("Could not count processed messages in %s: %s", self.mailbox, exc)
            return
        self._logger.debug("Found %d messages already processed in %s: %s", len(uids), self.mailbox, uids)

    def _sweep(self, handle: MailboxHandle) -> SweepReport:
        self._set_state(SessionState.SWEEPING)
        report = SweepReport(mailbox=self.mailbox)
        for rule in self.rules:
            report.filters_searched += 1
            self._sweep_rule(handle, rule, report)

        self.sweeps += 1
        self.last_report = report
        self._logger.info(
            "Sweep of %s done: filters=%d matched=%d saved=%d failures=%d",
            self.mailbox,
            report.filters_searched,
            report.messages_matched,
            report.files_saved,
            report.failures,
        )
        return report

    def _sweep_rule(self, handle: MailboxHandle, rule: FilterRule, report: SweepReport) -> None:
        try:
            criteria = unprocessed_criteria(rule)
        except ConfigError as exc:
            self._logger.error("%s: Invalid search criteria: %s", rule.name, exc)
            report.failures += 1
            return

        self._logger.debug("%s: Searching messages with criteria: %s", rule.name, criteria)
        try:
            uids = handle.search(criteria, filter_name=rule.name)
        except SearchError as exc:
            self._logger.error("%s: Error searching messages: %s", rule.name, exc)
            report.failures += 1
            return

        self._logger.debug("%s: Found messages: %s", rule.name, uids)
        report.messages_matched += len(uids)

        # Strictly one message at a time: the keyword lands before any move.
        for uid in uids:
            try:
                raw = handle.fetch_raw(uid, filter_name=rule.name)
            except FetchError as exc:
                self._logger.error("%s: Error fetching message: %s", rule.name, exc)
                report.failures += 1
                return

            try:
                outcome = self._processor.process(raw, rule, uid, handle)
            except MessageError as exc:
                self._logger.error("%s: Error processing message: %s", rule.name, exc)
                report.failures += 1
                continue
            report.files_saved += outcome.saved_count
