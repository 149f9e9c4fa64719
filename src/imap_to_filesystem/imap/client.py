from __future__ import annotations

import logging
import queue
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Callable, Iterator, List, Optional, Protocol, Sequence, Type

from imapclient import IMAPClient
from imapclient.exceptions import IMAPClientAbortError, IMAPClientError

from imap_to_filesystem.errors import (
    FetchError,
    FlagFailure,
    MessageError,
    MoveFailure,
    SearchError,
    SessionConnectionError,
)
from imap_to_filesystem.imap.events import BoxOpened, ConnectionEvent, ConnectionFailed, Ended, NewMail, Ready

# How long a single idle_check blocks; bounds the latency of stop().
IDLE_CHECK_SECONDS = 10.0


@dataclass(frozen=True)
class ImapConfig:
    host: str
    user: str
    password: str
    port: int = 993
    tls: bool = True
    # Socket timeout for every IMAP command.
    timeout: float = 30.0
    # IDLE is restarted after this many seconds to keep the session alive.
    idle_renew_seconds: float = 300.0


class MailboxHandle(Protocol):
    """The operations a sweep needs from a selected mailbox."""

    mailbox: str

    def search(self, criteria: Sequence[Any], *, filter_name: str = "") -> List[int]: ...
    def fetch_raw(self, uid: int, *, filter_name: str = "") -> bytes: ...
    def add_keyword(self, uid: int, keyword: str, *, filter_name: str = "") -> None: ...
    def move(self, uid: int, destination: str, *, filter_name: str = "") -> None: ...


class MailboxConnection:
    """
    One IMAP connection bound to one mailbox.

    start() runs the connection on its own thread: it logs in, selects the
    mailbox and then sits in IDLE, pushing events into `events`. After
    BoxOpened and NewMail the thread parks until resume() is called, so the
    owner can issue commands (search, fetch, flag, move) on the same socket
    without racing the IDLE loop.
    """

    def __init__(
        self,
        cfg: ImapConfig,
        mailbox: str,
        events: "queue.Queue[ConnectionEvent]",
        *,
        logger: Optional[logging.Logger] = None,
        client_factory: Callable[..., IMAPClient] = IMAPClient,
    ) -> None:
        self._cfg = cfg
        self.mailbox = mailbox
        self._events = events
        self._logger = logger or logging.getLogger("imap_to_filesystem.imap")
        self._client_factory = client_factory
        self._client: Optional[IMAPClient] = None
        self._exists = 0
        self._resume = threading.Event()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    # --- Lifecycle ---

    @property
    def client(self) -> IMAPClient:
        if self._client is None:
            raise SessionConnectionError(self.mailbox, "not connected")
        return self._client

    def open(self) -> int:
        """Connect, log in and select the mailbox. Returns the message count."""
        with self._connection_errors():
            self._login()
            return self._select()

    def close(self) -> None:
        if self._client is None:
            return
        client, self._client = self._client, None
        try:
            client.logout()
        except (IMAPClientError, OSError) as exc:
            self._logger.warning("Logout from %s failed: %s", self.mailbox, exc)

    def start(self) -> None:
        self._thread = threading.Thread(target=self._run, name=f"imap-idle-{self.mailbox}", daemon=True)
        self._thread.start()

    def resume(self) -> None:
        """Hand the socket back to the IDLE loop."""
        self._resume.set()

    def stop(self) -> None:
        """
        Leave IDLE and log out. A parked connection keeps waiting for resume(),
        so a sweep in progress finishes on the socket before logout.
        """
        self._stop.set()

    def join(self, timeout: Optional[float] = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout)

    def _login(self) -> None:
        client = self._client_factory(
            self._cfg.host,
            port=self._cfg.port,
            ssl=self._cfg.tls,
            timeout=self._cfg.timeout,
        )
        client.login(self._cfg.user, self._cfg.password)
        self._client = client
        self._logger.debug("Logged in to %s:%s as %s", self._cfg.host, self._cfg.port, self._cfg.user)

    def _select(self) -> int:
        info = self.client.select_folder(self.mailbox)
        self._exists = int(info.get(b"EXISTS", 0))
        return self._exists

    def _run(self) -> None:
        try:
            with self._connection_errors():
                self._login()
            self._emit(Ready())

            with self._connection_errors():
                exists = self._select()
            self._emit(BoxOpened(self.mailbox, exists))
            self._wait_for_resume()

            while not self._stop.is_set():
                with self._connection_errors():
                    count = self._idle_once()
                if count:
                    self._emit(NewMail(count))
                    self._wait_for_resume()

            self.close()
            self._emit(Ended())
        except SessionConnectionError as exc:
            self._client = None
            self._emit(ConnectionFailed(exc))
        except Exception as exc:
            # The session waits on the channel; any failure here must reach it.
            self._logger.exception("IDLE loop for %s crashed", self.mailbox)
            self._client = None
            self._emit(ConnectionFailed(exc))

    def _emit(self, event: ConnectionEvent) -> None:
        self._events.put(event)

    def _wait_for_resume(self) -> None:
        self._resume.wait()
        self._resume.clear()

    def _idle_once(self) -> int:
        client = self.client
        client.idle()
        deadline = time.monotonic() + self._cfg.idle_renew_seconds
        new = 0
        try:
            while not self._stop.is_set():
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    break
                responses = client.idle_check(timeout=min(IDLE_CHECK_SECONDS, remaining))
                new += self._count_new(responses)
                if new:
                    break
        finally:
            client.idle_done()
        return new

    def _count_new(self, responses: Sequence[Any]) -> int:
        new = 0
        for response in responses:
            if len(response) < 2 or not isinstance(response[0], int):
                continue
            if response[1] == b"EXISTS":
                # Servers only announce EXISTS on arrival; our own moves may leave the count stale.
                new += max(response[0] - self._exists, 1)
                self._exists = response[0]
            elif response[1] == b"EXPUNGE":
                self._exists = max(self._exists - 1, 0)
        return new

    # --- Operations ---

    @contextmanager
    def _connection_errors(self) -> Iterator[None]:
        try:
            yield
        except IMAPClientAbortError as exc:
            raise SessionConnectionError(self.mailbox, f"connection aborted: {exc}") from exc
        except OSError as exc:
            raise SessionConnectionError(self.mailbox, f"socket error: {exc}") from exc
        except IMAPClientError as exc:
            raise SessionConnectionError(self.mailbox, str(exc)) from exc

    @contextmanager
    def _command_errors(self, error_cls: Type[MessageError], filter_name: str, uid: Optional[int]) -> Iterator[None]:
        try:
            yield
        except IMAPClientAbortError as exc:
            raise SessionConnectionError(self.mailbox, f"connection aborted: {exc}") from exc
        except OSError as exc:
            raise SessionConnectionError(self.mailbox, f"socket error: {exc}") from exc
        except IMAPClientError as exc:
            raise error_cls(filter_name, uid, str(exc)) from exc
        except UnicodeError as exc:
            raise error_cls(filter_name, uid, f"cannot encode command: {exc}") from exc

    def search(self, criteria: Sequence[Any], *, filter_name: str = "") -> List[int]:
        criteria = list(criteria)
        # Non-ASCII arguments need an explicit CHARSET or imapclient refuses to encode them.
        charset = None if _is_ascii(criteria) else "UTF-8"
        with self._command_errors(SearchError, filter_name, None):
            return [int(uid) for uid in self.client.search(criteria, charset=charset)]

    def fetch_raw(self, uid: int, *, filter_name: str = "") -> bytes:
        with self._command_errors(FetchError, filter_name, uid):
            # PEEK keeps the \Seen flag untouched.
            data = self.client.fetch([uid], ["BODY.PEEK[]"])
        body = (data.get(uid) or {}).get(b"BODY[]")
        if body is None:
            raise FetchError(filter_name, uid, "message not found")
        return bytes(body)

    def add_keyword(self, uid: int, keyword: str, *, filter_name: str = "") -> None:
        with self._command_errors(FlagFailure, filter_name, uid):
            self.client.add_flags([uid], [keyword])

    def move(self, uid: int, destination: str, *, filter_name: str = "") -> None:
        with self._command_errors(MoveFailure, filter_name, uid):
            client = self.client
            if client.has_capability("MOVE"):
                client.move([uid], destination)
                return
            client.copy([uid], destination)
            client.delete_messages([uid])
            if client.has_capability("UIDPLUS"):
                client.uid_expunge([uid])
            else:
                client.expunge()


def _is_ascii(criteria: Sequence[Any]) -> bool:
    for item in criteria:
        if isinstance(item, (list, tuple)):
            if not _is_ascii(item):
                return False
        elif isinstance(item, str) and not item.isascii():
            return False
    return True
