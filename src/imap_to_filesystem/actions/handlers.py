from __future__ import annotations

from abc import ABC, abstractmethod

from imap_to_filesystem.actions.core import Action
from imap_to_filesystem.imap.client import MailboxHandle


class ActionHandler(ABC):
    @abstractmethod
    def handle(self, handle: MailboxHandle, action: Action) -> None:
        """Execute one action against the session's mailbox."""
        ...


class AddKeywordHandler(ActionHandler):
    def handle(self, handle: MailboxHandle, action: Action) -> None:
        if not action.keyword:
            raise ValueError("ADD_KEYWORD requires keyword")
        handle.add_keyword(action.uid, action.keyword, filter_name=action.filter_name)


class MoveHandler(ActionHandler):
    def handle(self, handle: MailboxHandle, action: Action) -> None:
        if not action.mailbox:
            raise ValueError("MOVE requires mailbox")
        handle.move(action.uid, action.mailbox, filter_name=action.filter_name)
