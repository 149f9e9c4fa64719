from __future__ import annotations

from dataclasses import dataclass
from typing import Union


@dataclass(frozen=True)
class Ready:
    """Logged in; the mailbox is not selected yet."""


@dataclass(frozen=True)
class BoxOpened:
    mailbox: str
    exists: int


@dataclass(frozen=True)
class NewMail:
    count: int


@dataclass(frozen=True)
class ConnectionFailed:
    error: BaseException


@dataclass(frozen=True)
class Ended:
    """The connection was closed cleanly."""


ConnectionEvent = Union[Ready, BoxOpened, NewMail, ConnectionFailed, Ended]
