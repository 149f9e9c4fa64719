from __future__ import annotations

from typing import Optional


class ImapToFilesystemError(Exception):
    """Base class for all errors raised by imap_to_filesystem."""


class ConfigError(ImapToFilesystemError):
    pass


class ConfigMissing(ConfigError):
    """No usable IMAP configuration. Fatal at startup."""


class SessionConnectionError(ImapToFilesystemError):
    """The connection of one mailbox session broke down."""

    def __init__(self, mailbox: str, message: str) -> None:
        super().__init__(f"{mailbox}: {message}")
        self.mailbox = mailbox


class MessageError(ImapToFilesystemError):
    """
    Failure bound to one filter and (optionally) one message UID.
    The filter name and UID are kept so every log line can be correlated.
    """

    action = "process"

    def __init__(self, filter_name: str, uid: Optional[int], detail: str) -> None:
        where = f"{filter_name}" if uid is None else f"{filter_name} uid={uid}"
        super().__init__(f"{self.action} failed for {where}: {detail}")
        self.filter_name = filter_name
        self.uid = uid
        self.detail = detail


class SearchError(MessageError):
    action = "search"


class FetchError(MessageError):
    action = "fetch"


class ParseError(MessageError):
    action = "parse"


class WriteFailure(MessageError):
    action = "write"


class FlagFailure(MessageError):
    action = "flag"


class MoveFailure(MessageError):
    action = "move"
