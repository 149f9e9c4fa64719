from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List

from imap_to_filesystem.actions.core import Action, ActionType
from imap_to_filesystem.actions.handlers import ActionHandler, AddKeywordHandler, MoveHandler
from imap_to_filesystem.imap.client import MailboxHandle


@dataclass
class ActionExecutor:
    handlers: Dict[ActionType, ActionHandler]
    # Post-save actions are ordered (flag before move); stop at the first failure.
    continue_on_error: bool = False
    logger: logging.Logger = field(default_factory=lambda: logging.getLogger("imap_to_filesystem.actions"))

    def run(self, handle: MailboxHandle, actions: List[Action]) -> None:
        for action in actions:
            handler = self.handlers.get(action.type)
            if not handler:
                self.logger.warning("No handler registered for action type: %s", action.type.value)
                continue

            try:
                handler.handle(handle, action)
            except Exception as exc:
                self.logger.error(
                    "%s: action %s failed uid=%s reason=%s err=%s",
                    action.filter_name,
                    action.type.value,
                    action.uid,
                    action.reason,
                    exc,
                )
                if not self.continue_on_error:
                    raise
            else:
                self.logger.debug("%s: %s done uid=%s", action.filter_name, action.type.value, action.uid)


def default_executor(logger: logging.Logger | None = None) -> ActionExecutor:
    executor = ActionExecutor(
        handlers={
            ActionType.ADD_KEYWORD: AddKeywordHandler(),
            ActionType.MOVE: MoveHandler(),
        },
    )
    if logger is not None:
        executor.logger = logger
    return executor
